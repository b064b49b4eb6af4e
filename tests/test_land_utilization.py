import pytest

from land_utilization import (
    CropAllocation, AreaExceededError, DuplicateSeasonError, InvalidAreaError, InvalidSeasonError,
    SeasonConflictError, build_snapshot, check_allocation, normalize_season,
)

YEAR = 2024


def crop(season, area, status="pending", id=None, crop_year=YEAR):
    return CropAllocation(id=id, season=season, crop_year=crop_year, area=area, status=status)


def test_scenario_on_a_ten_unit_field():
    existing = []

    snapshot = check_allocation(10, crop("Kharif", 4), existing)
    assert snapshot.remaining_area == 6
    existing.append(crop("Kharif", 4, id=1))

    snapshot = check_allocation(10, crop("Rabi", 5), existing)
    assert snapshot.remaining_area == 1
    assert snapshot.occupied_area == 9
    assert snapshot.utilization_percentage == 90
    existing.append(crop("Rabi", 5, id=2))

    with pytest.raises(DuplicateSeasonError):
        check_allocation(10, crop("Kharif", 1), existing)
    with pytest.raises(SeasonConflictError):
        check_allocation(10, crop("Whole Year", 1), existing)

    assert build_snapshot(10, existing).remaining_area == 1


def test_area_cannot_exceed_field():
    with pytest.raises(AreaExceededError) as exc:
        check_allocation(10, crop("Rabi", 7), [crop("Kharif", 4, id=1)])
    detail = exc.value.to_detail()
    assert detail["rule"] == "area_exceeded"
    assert detail["total_area"] == 10
    assert detail["occupied_before"] == 4
    assert detail["remaining_before"] == 6
    assert detail["requested_area"] == 7
    assert detail["shortfall"] == 1


def test_exact_fit_is_accepted():
    snapshot = check_allocation(10, crop("Rabi", 6), [crop("Kharif", 4, id=1)])
    assert snapshot.remaining_area == 0
    assert snapshot.utilization_percentage == 100


def test_whole_year_blocks_seasonal_crops():
    with pytest.raises(SeasonConflictError) as exc:
        check_allocation(10, crop("Rabi", 1), [crop("Whole Year", 2, id=1)])
    assert exc.value.details["conflicting_seasons"] == ["Whole Year"]


def test_whole_year_blocked_by_seasonal_crop():
    with pytest.raises(SeasonConflictError) as exc:
        check_allocation(10, crop("whole year", 1), [crop("Kharif", 2, id=1)])
    assert exc.value.details["conflicting_seasons"] == ["Kharif"]


def test_duplicate_checked_before_area():
    # Plenty of headroom, still a duplicate
    with pytest.raises(DuplicateSeasonError):
        check_allocation(100, crop("Kharif", 1), [crop("Kharif", 1, id=1)])


def test_second_whole_year_is_a_duplicate():
    with pytest.raises(DuplicateSeasonError):
        check_allocation(10, crop("Whole Year", 1), [crop("Whole Year", 1, id=1)])


def test_rejected_records_are_ignored():
    existing = [crop("Whole Year", 10, status="rejected", id=1)]
    snapshot = check_allocation(10, crop("Kharif", 10), existing)
    assert snapshot.occupied_area == 10
    assert [a.season for a in snapshot.active_crops] == ["Kharif"]


def test_harvested_record_frees_area_but_keeps_its_slot():
    existing = [crop("Kharif", 8, status="harvested", id=1)]
    snapshot = check_allocation(10, crop("Rabi", 10), existing)
    assert snapshot.remaining_area == 0
    with pytest.raises(DuplicateSeasonError):
        check_allocation(10, crop("Kharif", 1), existing)


def test_other_years_do_not_count():
    existing = [crop("Whole Year", 10, id=1, crop_year=YEAR - 1)]
    snapshot = check_allocation(10, crop("Whole Year", 10), existing)
    assert snapshot.remaining_area == 0


def test_exclude_id_skips_record_being_updated():
    existing = [crop("Kharif", 4, id=1), crop("Rabi", 5, id=2)]
    snapshot = check_allocation(10, crop("Kharif", 5, id=1), existing, exclude_id=1)
    assert snapshot.occupied_area == 10

    with pytest.raises(AreaExceededError):
        check_allocation(10, crop("Kharif", 6, id=1), existing, exclude_id=1)


def test_season_is_normalized_case_insensitively():
    assert normalize_season("kharif") == "Kharif"
    assert normalize_season("  WHOLE   year ") == "Whole Year"
    snapshot = check_allocation(10, crop("rabi", 2), [])
    assert snapshot.active_crops[0].season == "Rabi"


def test_stored_lowercase_season_still_counts_as_duplicate():
    with pytest.raises(DuplicateSeasonError):
        check_allocation(10, crop("Rabi", 1), [crop("rabi", 1, id=1)])


@pytest.mark.parametrize("season", ["Zaid", "Summer", "", "Monsoon"])
def test_unknown_seasons_rejected(season):
    with pytest.raises(InvalidSeasonError) as exc:
        check_allocation(10, crop(season, 1), [])
    assert exc.value.rule == "invalid_season"
    assert exc.value.details["allowed_seasons"] == ["Kharif", "Rabi", "Whole Year"]


@pytest.mark.parametrize("area", [0, -2.5])
def test_non_positive_area_rejected(area):
    with pytest.raises(InvalidAreaError):
        check_allocation(10, crop("Kharif", area), [])


def test_snapshot_of_empty_field():
    snapshot = build_snapshot(0, [])
    assert snapshot.utilization_percentage == 0
    assert snapshot.remaining_area == 0
    assert snapshot.active_crops == []


def test_snapshot_rounds_to_two_decimals():
    snapshot = build_snapshot(10, [crop("Kharif", 3.333, id=1)])
    assert snapshot.occupied_area == 3.33
    assert snapshot.remaining_area == 6.67
