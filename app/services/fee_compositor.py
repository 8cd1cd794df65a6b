# app/services/fee_compositor.py
"""
Per-pupil fee breakdowns built from cached group base fees plus the pupil's
own assignment fees, discounts and payments.
"""
import asyncio
import logging
import time
from decimal import Decimal
from typing import Dict, List, Optional

from app.core.exceptions import AcademicYearNotFoundError, PupilNotGroupedError
from app.schemas.academic import AcademicYear, find_academic_year_for_term
from app.schemas.fee_schema import (
    AppliedDiscount, ApplicableFee, AssignmentFeeLine, DiscountLine, FeeStructure,
    OptimizedPupilFees, Payment, PupilGroup, PupilVariableComponents, ZERO
)
from app.schemas.pupil import Pupil
from app.services.fee_group_cache import FeeGroupCache

logger = logging.getLogger(__name__)


def _paid_towards(payments: List[Payment], fee_id: str) -> Decimal:
    return sum((p.amount for p in payments if p.fee_id == fee_id), ZERO)


class FeeCompositor:
    """Merges group base fees with individual fee components for each pupil"""

    def __init__(self, cache: FeeGroupCache):
        self.cache = cache

    def calculate_pupil_variable_components(
        self,
        pupil: Pupil,
        fee_structures: List[FeeStructure],
        pupil_payments: List[Payment],
        academic_years: List[AcademicYear],
        term_id: str
    ) -> PupilVariableComponents:
        """Assignment fees, discounts and total paid for one pupil"""
        if find_academic_year_for_term(academic_years, term_id) is None:
            raise AcademicYearNotFoundError(term_id=term_id)

        fees_by_id = {fee.id: fee for fee in fee_structures}
        assignment_fees: List[AssignmentFeeLine] = []
        discounts: List[DiscountLine] = []

        for assignment in pupil.assigned_fees:
            fee = fees_by_id.get(assignment.fee_structure_id)
            if fee is None:
                continue
            if fee.is_assignment_fee and fee.amount > 0:
                assignment_fees.append(AssignmentFeeLine(
                    fee_structure_id=fee.id,
                    name=fee.name,
                    amount=fee.amount,
                ))
            if fee.is_discount:
                discounts.append(DiscountLine(
                    fee_structure_id=fee.id,
                    name=fee.name,
                    amount=abs(fee.amount),
                    linked_fee_id=fee.linked_fee_id,
                ))

        total_paid = sum((p.amount for p in pupil_payments if p.pupil_id == pupil.id), ZERO)

        components = PupilVariableComponents(
            pupil_id=pupil.id,
            assignment_fees=assignment_fees,
            discounts=discounts,
            total_paid=total_paid,
            last_calculated=self.cache.clock(),
        )
        self.cache.store_variable_components(components)

        logger.debug(
            f"Variable components for pupil {pupil.id}: {len(assignment_fees)} assignment fees, "
            f"{len(discounts)} discounts, paid {total_paid}"
        )
        return components

    async def get_optimized_pupil_fees(
        self,
        pupil: Pupil,
        fee_structures: List[FeeStructure],
        pupil_payments: List[Payment],
        academic_years: List[AcademicYear],
        term_id: str
    ) -> OptimizedPupilFees:
        """
        Fee breakdown for a pupil that has already been grouped.

        Raises PupilNotGroupedError when the pupil has no group mapping.
        """
        start = time.perf_counter()

        group_key = self.cache.get_group_key(pupil.id)
        if group_key is None:
            raise PupilNotGroupedError(pupil.id)

        group = PupilGroup(
            class_id=group_key.class_id,
            section=group_key.section,
            academic_year_id=group_key.academic_year_id,
            term_id=group_key.term_id,
            pupils=[pupil.id],
        )
        group_fees, from_cache = self.cache.get_or_calculate_group_fees(group, fee_structures, academic_years)

        components = self.calculate_pupil_variable_components(
            pupil, fee_structures, pupil_payments, academic_years, term_id
        )
        payments = [p for p in pupil_payments if p.pupil_id == pupil.id]

        applicable_fees: List[ApplicableFee] = []
        total_fees = ZERO

        for base_fee in group_fees.base_fees:
            linked = [d for d in components.discounts if d.linked_fee_id == base_fee.fee_structure_id]
            amount = base_fee.amount
            original_amount: Optional[Decimal] = None
            discount: Optional[AppliedDiscount] = None

            if linked:
                discount_total = sum((d.amount for d in linked), ZERO)
                original_amount = base_fee.amount
                amount = max(ZERO, base_fee.amount - discount_total)
                discount = AppliedDiscount(id=linked[0].fee_structure_id, name=linked[0].name, amount=discount_total)

            paid = _paid_towards(payments, base_fee.fee_structure_id)
            applicable_fees.append(ApplicableFee(
                fee_structure_id=base_fee.fee_structure_id,
                name=base_fee.name,
                amount=amount,
                paid=paid,
                balance=max(ZERO, amount - paid),
                original_amount=original_amount,
                discount=discount,
            ))
            total_fees += amount

        for assignment_fee in components.assignment_fees:
            paid = _paid_towards(payments, assignment_fee.fee_structure_id)
            applicable_fees.append(ApplicableFee(
                fee_structure_id=assignment_fee.fee_structure_id,
                name=assignment_fee.name,
                amount=assignment_fee.amount,
                paid=paid,
                balance=max(ZERO, assignment_fee.amount - paid),
            ))
            total_fees += assignment_fee.amount

        balance = max(ZERO, total_fees - components.total_paid)
        calculation_time = (time.perf_counter() - start) * 1000

        logger.debug(
            f"Fees for pupil {pupil.id}: total {total_fees}, paid {components.total_paid}, "
            f"balance {balance}, from_cache={from_cache}, {calculation_time:.2f}ms"
        )

        return OptimizedPupilFees(
            total_fees=total_fees,
            total_paid=components.total_paid,
            balance=balance,
            applicable_fees=applicable_fees,
            from_cache=from_cache,
            calculation_time=calculation_time,
        )

    async def batch_process_pupils(
        self,
        pupils: List[Pupil],
        fee_structures: List[FeeStructure],
        payments_by_pupil: Dict[str, List[Payment]],
        academic_years: List[AcademicYear],
        term_id: str
    ) -> Dict[str, OptimizedPupilFees]:
        """
        Fee breakdowns for a whole roster.

        Groups are warmed before any pupil is composed, so base fees are
        computed once per group. A pupil that fails gets a zeroed result
        and the rest of the batch continues.
        """
        start = time.perf_counter()
        logger.info(f"Batch processing {len(pupils)} pupils for term {term_id}")

        academic_year = find_academic_year_for_term(academic_years, term_id)
        if academic_year is None:
            raise AcademicYearNotFoundError(term_id=term_id)

        groups = self.cache.group_pupils(pupils, academic_year.id, term_id)
        calculations_before = self.cache.get_cache_stats().base_fee_calculations

        async def warm(group: PupilGroup):
            self.cache.get_or_calculate_group_fees(group, fee_structures, academic_years)

        await asyncio.gather(*(warm(group) for group in groups.values()))

        async def process(pupil: Pupil) -> OptimizedPupilFees:
            try:
                return await self.get_optimized_pupil_fees(
                    pupil,
                    fee_structures,
                    payments_by_pupil.get(pupil.id, []),
                    academic_years,
                    term_id,
                )
            except Exception:
                logger.exception(f"Error processing pupil {pupil.id}")
                return OptimizedPupilFees.empty()

        outcomes = await asyncio.gather(*(process(pupil) for pupil in pupils))
        results = {pupil.id: outcome for pupil, outcome in zip(pupils, outcomes)}

        total_ms = (time.perf_counter() - start) * 1000
        cache_hits = sum(1 for r in results.values() if r.from_cache)
        calculations = self.cache.get_cache_stats().base_fee_calculations - calculations_before
        avg_ms = total_ms / len(pupils) if pupils else 0.0
        logger.info(
            f"Batch complete: {len(pupils)} pupils, {len(groups)} groups, {cache_hits} cache hits, "
            f"{calculations} base-fee calculations, {total_ms:.2f}ms ({avg_ms:.2f}ms per pupil)"
        )
        return results


__all__ = ["FeeCompositor"]
