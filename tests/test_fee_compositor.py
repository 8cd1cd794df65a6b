import asyncio
from decimal import Decimal

import pytest

from app.core.exceptions import AcademicYearNotFoundError, PupilNotGroupedError

from conftest import assign, make_fee, make_payment, make_pupil, make_year


@pytest.fixture
def fees():
    return [
        make_fee("tuition", 300000),
        make_fee("lunch", 50000),
        make_fee("bus", 80000, is_assignment_fee=True),
        make_fee("bursary", -100000, category="Discount", linked_fee_id="tuition"),
        make_fee("staff-child", 250000, category="Discount", linked_fee_id="tuition"),
        make_fee("lunch-waiver", -20000, linked_fee_id="lunch"),
        make_fee("boarding", 400000, class_id="P6"),
    ]


def _compose(compositor, pupil, fees, payments=(), years=None, term_id="2024-t1"):
    years = years or [make_year()]
    compositor.cache.group_pupils([pupil], "2024", term_id)
    return asyncio.run(compositor.get_optimized_pupil_fees(pupil, fees, list(payments), years, term_id))


def test_plain_pupil_pays_base_fees(compositor, fees):
    result = _compose(compositor, make_pupil(), fees, [make_payment("p1", 100000, "tuition")])

    assert [f.fee_structure_id for f in result.applicable_fees] == ["tuition", "lunch"]
    assert result.total_fees == Decimal("350000")
    assert result.total_paid == Decimal("100000")
    assert result.balance == Decimal("250000")
    tuition = result.applicable_fees[0]
    assert (tuition.paid, tuition.balance, tuition.discount) == (Decimal("100000"), Decimal("200000"), None)


def test_linked_discount_reduces_only_its_fee(compositor, fees):
    pupil = make_pupil(assigned_fees=assign("bursary"))

    result = _compose(compositor, pupil, fees)

    tuition, lunch = result.applicable_fees
    assert tuition.original_amount == Decimal("300000")
    assert tuition.amount == Decimal("200000")
    assert tuition.discount.id == "bursary"
    assert tuition.discount.amount == Decimal("100000")
    assert tuition.discount.type == "fixed"
    assert lunch.amount == Decimal("50000")
    assert lunch.original_amount is None
    assert result.total_fees == Decimal("250000")


def test_stacked_discounts_floor_at_zero(compositor, fees):
    pupil = make_pupil(assigned_fees=assign("bursary", "staff-child", "lunch-waiver"))

    result = _compose(compositor, pupil, fees)

    tuition, lunch = result.applicable_fees
    assert tuition.amount == Decimal("0")
    assert tuition.discount.amount == Decimal("350000")
    assert tuition.discount.id == "bursary"
    assert lunch.amount == Decimal("30000")
    assert result.total_fees == Decimal("30000")


def test_assignment_fees_are_added_as_own_lines(compositor, fees):
    pupil = make_pupil(assigned_fees=assign("bus"))

    result = _compose(compositor, pupil, fees, [make_payment("p1", 30000, "bus")])

    bus = result.applicable_fees[-1]
    assert (bus.fee_structure_id, bus.amount, bus.paid, bus.balance) == (
        "bus", Decimal("80000"), Decimal("30000"), Decimal("50000")
    )
    assert bus.discount is None
    assert result.total_fees == Decimal("430000")


def test_overpayment_never_gives_negative_balance(compositor, fees):
    payments = [make_payment("p1", 500000, "tuition"), make_payment("p1", 10000)]

    result = _compose(compositor, make_pupil(), fees, payments)

    assert result.total_paid == Decimal("510000")
    assert result.balance == Decimal("0")
    assert result.applicable_fees[0].balance == Decimal("0")


def test_other_pupils_payments_are_ignored(compositor, fees):
    result = _compose(compositor, make_pupil(), fees, [make_payment("p2", 100000, "tuition")])

    assert result.total_paid == Decimal("0")
    assert result.applicable_fees[0].paid == Decimal("0")


def test_second_call_within_ttl_comes_from_cache(compositor, fees):
    pupil = make_pupil(assigned_fees=assign("bursary"))
    payments = [make_payment("p1", 1000)]

    first = _compose(compositor, pupil, fees, payments)
    second = _compose(compositor, pupil, fees, payments)

    assert not first.from_cache
    assert second.from_cache
    assert (first.total_fees, first.balance) == (second.total_fees, second.balance)


def test_expired_group_is_recomputed(compositor, fees, clock):
    _compose(compositor, make_pupil(), fees)
    clock.advance(31 * 60)

    result = _compose(compositor, make_pupil(), fees)

    assert not result.from_cache
    assert compositor.cache.get_cache_stats().base_fee_calculations == 2


def test_variable_components_are_stored(compositor, fees):
    pupil = make_pupil(assigned_fees=assign("bus", "bursary", "missing-fee"))
    _compose(compositor, pupil, fees, [make_payment("p1", 1500)])

    components = compositor.cache.get_variable_components("p1")

    assert [a.fee_structure_id for a in components.assignment_fees] == ["bus"]
    assert [(d.fee_structure_id, d.amount, d.linked_fee_id) for d in components.discounts] == [
        ("bursary", Decimal("100000"), "tuition")
    ]
    assert components.total_paid == Decimal("1500")


def test_ungrouped_pupil_is_a_precondition_error(compositor, fees):
    with pytest.raises(PupilNotGroupedError):
        asyncio.run(compositor.get_optimized_pupil_fees(make_pupil(), fees, [], [make_year()], "2024-t1"))


def test_batch_computes_base_fees_once_per_group(compositor):
    combos = [("P5", "day"), ("P5", "boarding"), ("P6", "day"), ("P6", "boarding")]
    pupils = [make_pupil(f"p{i}", *combos[i % 4]) for i in range(100)]
    fees = [make_fee("tuition-p5", 300000), make_fee("tuition-p6", 320000, class_id="P6")]
    payments = {"p0": [make_payment("p0", 300000, "tuition-p5")]}

    results = asyncio.run(compositor.batch_process_pupils(pupils, fees, payments, [make_year()], "2024-t1"))

    assert len(results) == 100
    assert compositor.cache.get_cache_stats().base_fee_calculations == 4
    assert compositor.cache.get_cache_stats().total_groups == 4
    assert all(r.from_cache for r in results.values())
    assert results["p0"].balance == Decimal("0")
    assert results["p1"].balance == Decimal("300000")
    assert results["p2"].total_fees == Decimal("320000")


def test_batch_isolates_failing_pupil(compositor, fees, monkeypatch):
    pupils = [make_pupil("p1"), make_pupil("p2"), make_pupil("p3")]
    original = compositor.calculate_pupil_variable_components

    def flaky(pupil, *args, **kwargs):
        if pupil.id == "p2":
            raise ValueError("corrupt assignment record")
        return original(pupil, *args, **kwargs)

    monkeypatch.setattr(compositor, "calculate_pupil_variable_components", flaky)

    results = asyncio.run(compositor.batch_process_pupils(pupils, fees, {}, [make_year()], "2024-t1"))

    assert results["p2"].total_fees == Decimal("0")
    assert results["p2"].applicable_fees == []
    assert not results["p2"].from_cache
    assert results["p1"].total_fees == Decimal("350000")
    assert results["p3"].total_fees == Decimal("350000")


def test_batch_with_unknown_term_is_an_error(compositor, fees):
    with pytest.raises(AcademicYearNotFoundError):
        asyncio.run(compositor.batch_process_pupils([make_pupil()], fees, {}, [make_year()], "1999-t1"))
