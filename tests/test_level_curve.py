import pytest

from engines.level_curve import (
    MAX_LEVEL,
    level_for,
    level_title,
    total_xp_for_level,
    xp_cost_of_level,
)


def test_level_costs_follow_geometric_curve():
    assert xp_cost_of_level(1) == 0
    assert xp_cost_of_level(2) == 100
    assert xp_cost_of_level(3) == 120
    assert xp_cost_of_level(4) == 144
    assert xp_cost_of_level(5) == 172


@pytest.mark.parametrize(
    "xp, level",
    [(0, 1), (99, 1), (100, 2), (219, 2), (220, 3), (363, 3), (364, 4)],
)
def test_level_for_thresholds(xp, level):
    assert level_for(xp).level == level


def test_level_boundary_matches_cumulative_cost():
    for level in range(2, MAX_LEVEL + 1):
        threshold = total_xp_for_level(level)
        assert level_for(threshold).level == level
        assert level_for(threshold - 1).level == level - 1


def test_level_is_monotonic_and_capped():
    previous = 0
    for xp in range(0, total_xp_for_level(MAX_LEVEL) + 5000, 97):
        current = level_for(xp).level
        assert previous <= current <= MAX_LEVEL
        previous = current


def test_progress_fields_between_levels():
    info = level_for(160)
    assert info.level == 2
    assert info.xp_for_current_level == 100
    assert info.xp_for_next_level == 220
    assert info.progress_percent == 50
    assert info.xp_needed == 60
    assert not info.is_max_level
    assert info.title == "Beginner"


def test_max_level_reports_full_progress():
    info = level_for(total_xp_for_level(MAX_LEVEL) + 123456)
    assert info.level == MAX_LEVEL
    assert info.is_max_level
    assert info.progress_percent == 100
    assert info.xp_needed == 0
    assert info.title == "Legend"


def test_level_titles_bands():
    assert level_title(1) == "Beginner"
    assert level_title(6) == "Apprentice"
    assert level_title(40) == "Master"
    assert level_title(46) == "Legend"
