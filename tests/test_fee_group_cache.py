import asyncio
from decimal import Decimal

import pytest

from app.core.exceptions import AcademicYearNotFoundError
from app.schemas.fee_schema import GroupKey, PupilGroup
from app.services.fee_grouping import group_pupils_by_fee_characteristics

from conftest import make_fee, make_pupil, make_year


def _roster():
    return [
        make_pupil("p1", "P5", "day"),
        make_pupil("p2", "P5", "boarding"),
        make_pupil("p3", "P5", None),
        make_pupil("p4", "P6", "day"),
        make_pupil("p5", "P5", "day"),
    ]


def test_grouping_is_a_partition():
    pupils = _roster()

    groups = group_pupils_by_fee_characteristics(pupils, "2024", "2024-t1")

    members = [pupil_id for group in groups.values() for pupil_id in group.pupils]
    assert sorted(members) == sorted(p.id for p in pupils)
    assert set(groups) == {
        GroupKey("P5", "day", "2024", "2024-t1"),
        GroupKey("P5", "boarding", "2024", "2024-t1"),
        GroupKey("P6", "day", "2024", "2024-t1"),
    }
    for key, group in groups.items():
        assert group.group_key == key


def test_missing_section_defaults_to_day():
    groups = group_pupils_by_fee_characteristics(_roster(), "2024", "2024-t1")

    assert groups[GroupKey("P5", "day", "2024", "2024-t1")].pupils == ["p1", "p3", "p5"]


def test_group_key_renders_pipe_separated():
    assert str(GroupKey("P5", "day", "2024", "2024-t1")) == "P5|day|2024|2024-t1"


def test_cache_records_pupil_groups(cache):
    cache.group_pupils(_roster(), "2024", "2024-t1")

    assert cache.get_group_key("p4") == GroupKey("P6", "day", "2024", "2024-t1")
    assert cache.get_group_key("nobody") is None
    assert cache.get_cache_stats().total_pupils == 5


def _fees():
    return [
        make_fee("tuition", 300000),
        make_fee("lunch", 50000, is_required=False),
        make_fee("bus", 80000, is_assignment_fee=True),
        make_fee("bursary", -100000, category="Discount", linked_fee_id="tuition"),
        make_fee("sibling", 20000, category="Discount"),
        make_fee("p6-tuition", 320000, class_id="P6"),
        make_fee("term2-tuition", 310000, term_id="2024-t2"),
        make_fee("old-tuition", 250000, academic_year_id="2023", term_id="2023-t1"),
    ]


def _group(class_id="P5", section="day", year="2024", term="2024-t1"):
    return PupilGroup(class_id=class_id, section=section, academic_year_id=year, term_id=term, pupils=["p1"])


def test_base_fees_exclude_individual_entries(cache):
    cached = cache.calculate_group_base_fees(_group(), _fees(), [make_year()])

    assert [f.fee_structure_id for f in cached.base_fees] == ["tuition", "lunch"]
    assert cached.total_base_fees == sum(f.amount for f in cached.base_fees) == Decimal("350000")
    assert cached.group_key == "P5|day|2024|2024-t1"


def test_entry_expires_after_ttl(cache, clock):
    cached = cache.calculate_group_base_fees(_group(), _fees(), [make_year()])

    assert cached.expires_at == cached.calculated_at + 30 * 60
    clock.advance(30 * 60)
    assert cache.get_cached_group_fees(_group().group_key) is not None
    clock.advance(1)
    assert cache.get_cached_group_fees(_group().group_key) is None


def test_get_or_calculate_hits_then_recomputes_when_expired(cache, clock):
    years = [make_year()]

    _, first = cache.get_or_calculate_group_fees(_group(), _fees(), years)
    _, second = cache.get_or_calculate_group_fees(_group(), _fees(), years)
    clock.advance(31 * 60)
    _, third = cache.get_or_calculate_group_fees(_group(), _fees(), years)

    assert (first, second, third) == (False, True, False)
    stats = cache.get_cache_stats()
    assert (stats.hits, stats.misses, stats.base_fee_calculations) == (1, 2, 2)


def test_unknown_academic_year_is_an_error(cache):
    with pytest.raises(AcademicYearNotFoundError):
        cache.calculate_group_base_fees(_group(year="1999"), _fees(), [make_year()])


def test_invalidate_matches_year_and_term_fields_only(cache):
    years = [make_year("2024"), make_year("20", name="Short id year")]
    for group in [
        _group(),
        _group(section="boarding"),
        _group(term="2024-t2"),
        # ids that contain the target ids as substrings must survive
        _group(class_id="2024-t1", year="20", term="20-t1"),
    ]:
        cache.calculate_group_base_fees(group, _fees(), years)

    removed = cache.invalidate_cache_for_term("2024", "2024-t1")

    assert removed == 2
    assert cache.get_cached_group_fees(_group().group_key) is None
    assert cache.get_cached_group_fees(_group(term="2024-t2").group_key) is not None
    assert cache.get_cached_group_fees(_group(class_id="2024-t1", year="20", term="20-t1").group_key) is not None


def test_maintenance_sweeps_expired_groups_and_orphaned_pupils(cache, clock):
    years = [make_year()]
    cache.group_pupils([make_pupil("p1"), make_pupil("p2", "P6")], "2024", "2024-t1")
    cache.calculate_group_base_fees(_group(), _fees(), years)
    clock.advance(20 * 60)
    cache.calculate_group_base_fees(_group(class_id="P6"), _fees(), years)
    clock.advance(15 * 60)

    result = cache.perform_cache_maintenance()

    assert (result.expired_groups_removed, result.orphaned_pupils_removed) == (1, 1)
    assert cache.get_group_key("p1") is None
    assert cache.get_group_key("p2") == GroupKey("P6", "day", "2024", "2024-t1")


def test_stats_and_clear(cache, clock):
    years = [make_year()]
    cache.calculate_group_base_fees(_group(), _fees(), years)
    clock.advance(20 * 60)
    cache.calculate_group_base_fees(_group(section="boarding"), _fees(), years)
    clock.advance(15 * 60)

    stats = cache.get_cache_stats()
    assert (stats.total_groups, stats.expired_groups, stats.active_groups) == (2, 1, 1)
    assert stats.cache_efficiency == "50.0%"

    cache.clear_cache()

    cleared = cache.get_cache_stats()
    assert (cleared.total_groups, cleared.total_pupils, cleared.base_fee_calculations) == (0, 0, 0)
    assert cleared.cache_efficiency == "0%"


def test_preload_common_groups(cache):
    years = [make_year()]

    loaded = asyncio.run(cache.preload_common_groups(["P5", "P6"], years, _fees()))

    # 3 terms x 2 classes x 2 sections
    assert loaded == 12
    assert cache.get_cached_group_fees(GroupKey("P6", "boarding", "2024", "2024-t3")) is not None


def test_preload_skips_unknown_sections(clock):
    from app.services.fee_group_cache import FeeGroupCache

    cache = FeeGroupCache(clock=clock, preload_sections=["day", "Weekly"])

    loaded = asyncio.run(cache.preload_common_groups(["P5", "P6"], [make_year()], _fees()))

    # only the day groups load
    assert loaded == 6
    assert cache.get_cache_stats().total_groups == 6


def test_background_maintenance_runs_on_interval(clock):
    from app.services.fee_group_cache import FeeGroupCache

    cache = FeeGroupCache(ttl_seconds=5, maintenance_interval_seconds=0.01, clock=clock)
    cache.calculate_group_base_fees(_group(), _fees(), [make_year()])
    clock.advance(10)

    async def run():
        task = cache.start_background_maintenance()
        assert cache.start_background_maintenance() is task
        await asyncio.sleep(0.05)
        await cache.stop_background_maintenance()
        return task

    task = asyncio.run(run())

    assert task.cancelled()
    assert cache.get_cache_stats().total_groups == 0
