# app/services/fee_grouping.py
"""
Partition a roster into groups of pupils whose base fees are identical.

Pupils sharing class, section, academic year and term pay the same base
fees, so base-fee resolution runs once per group instead of once per pupil.
"""
import logging
from typing import Dict, List, MutableMapping, Optional

from app.schemas.fee_schema import GroupKey, PupilGroup
from app.schemas.pupil import Pupil

logger = logging.getLogger(__name__)


def generate_group_key(class_id: str, section: str, academic_year_id: str, term_id: str) -> GroupKey:
    return GroupKey(class_id, section, academic_year_id, term_id)


def group_pupils_by_fee_characteristics(
    pupils: List[Pupil],
    academic_year_id: str,
    term_id: str,
    pupil_group_map: Optional[MutableMapping[str, GroupKey]] = None,
    default_section: str = "day"
) -> Dict[GroupKey, PupilGroup]:
    """
    Group pupils by (class, section, academic year, term).

    Pupils without a section count as default_section. When pupil_group_map
    is given, each pupil's group key is recorded in it.
    """
    groups: Dict[GroupKey, PupilGroup] = {}

    for pupil in pupils:
        section = pupil.section or default_section
        key = generate_group_key(pupil.class_id, section, academic_year_id, term_id)

        group = groups.get(key)
        if group is None:
            group = PupilGroup(
                class_id=pupil.class_id,
                section=section,
                academic_year_id=academic_year_id,
                term_id=term_id,
            )
            groups[key] = group

        group.pupils.append(pupil.id)
        if pupil_group_map is not None:
            pupil_group_map[pupil.id] = key

    logger.info(f"Grouped {len(pupils)} pupils into {len(groups)} fee groups")
    for key, group in groups.items():
        logger.debug(f"  {key}: {len(group.pupils)} pupils")

    return groups
