# land_utilization.py
"""
Land-utilization and season-conflict rules for crop planting records.

A field's cultivable area is shared by the crop records planted on it in a
given year. Before a record is inserted or updated the candidate is checked
against the other records for the same field and year:

1. the season must be one of Kharif, Rabi or Whole Year;
2. the area must be positive;
3. a (field, year, season) slot can be held by one record only;
4. a Whole Year crop excludes every other season for that year, and the
   other way around;
5. the areas of the active records plus the candidate must fit the field.

Rejected records never count. Harvested records keep their season slot but
no longer occupy land.

The functions here are pure: they take plain values and raise a
LandUtilizationError subclass on the first violated rule. Loading the rows
(and locking the field while doing so) is the caller's job.
"""

import logging
from typing import Iterable, List, Optional

from pydantic import BaseModel

log = logging.getLogger(__name__)

KHARIF = "Kharif"
RABI = "Rabi"
WHOLE_YEAR = "Whole Year"
SEASONS = (KHARIF, RABI, WHOLE_YEAR)

_SEASON_LOOKUP = {season.lower(): season for season in SEASONS}

# Statuses that give up the field. Kept here so the rule does not depend on models.py
_RELEASED_STATUSES = {"rejected", "harvested"}
_UNCLAIMED_STATUSES = {"rejected"}


# --- Errors ---
class LandUtilizationError(ValueError):
    """Base class for rule violations. `rule` names the violated rule."""
    rule = "land_utilization"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_detail(self) -> dict:
        """Payload suitable for an HTTP 400 response body."""
        return {"rule": self.rule, "message": self.message, **self.details}


class InvalidSeasonError(LandUtilizationError):
    rule = "invalid_season"


class InvalidAreaError(LandUtilizationError):
    rule = "invalid_area"


class DuplicateSeasonError(LandUtilizationError):
    rule = "duplicate_season"


class SeasonConflictError(LandUtilizationError):
    rule = "season_conflict"


class AreaExceededError(LandUtilizationError):
    rule = "area_exceeded"


# --- Value Types ---
class CropAllocation(BaseModel):
    """The parts of a crop record that matter for land allocation."""
    id: Optional[int] = None
    season: str
    crop_year: int
    area: float
    status: str = "pending"
    crop_name: Optional[str] = None

    @property
    def occupies_area(self) -> bool:
        return self.status not in _RELEASED_STATUSES

    @property
    def claims_season(self) -> bool:
        return self.status not in _UNCLAIMED_STATUSES


class UtilizationSnapshot(BaseModel):
    total_area: float
    occupied_area: float
    remaining_area: float
    utilization_percentage: float
    active_crops: List[CropAllocation] = []


# --- Helpers ---
def normalize_season(value: str) -> str:
    """Maps a season string onto its canonical spelling, case-insensitively."""
    canonical = _SEASON_LOOKUP.get(" ".join(str(value or "").split()).lower())
    if canonical is None:
        raise InvalidSeasonError(
            f"Unknown season '{value}'. Allowed seasons: {', '.join(SEASONS)}.",
            allowed_seasons=list(SEASONS),
        )
    return canonical


def _same_season(stored: str, season: str) -> bool:
    return _SEASON_LOOKUP.get(stored.lower(), stored) == season


def _round(value: float) -> float:
    return round(float(value), 2)


def build_snapshot(total_area: float, allocations: Iterable[CropAllocation]) -> UtilizationSnapshot:
    """Summarizes how much of a field the active allocations occupy."""
    active = [a for a in allocations if a.occupies_area]
    occupied = _round(sum(a.area for a in active))
    total = _round(total_area)
    percentage = _round(occupied / total * 100) if total > 0 else 0.0
    return UtilizationSnapshot(
        total_area=total,
        occupied_area=occupied,
        remaining_area=_round(total - occupied),
        utilization_percentage=percentage,
        active_crops=active,
    )


# --- The Rule ---
def check_allocation(
    total_area: float,
    candidate: CropAllocation,
    existing: Iterable[CropAllocation],
    exclude_id: Optional[int] = None,
) -> UtilizationSnapshot:
    """
    Validates placing `candidate` on a field of `total_area`.

    `existing` may hold records of any year; only those in the candidate's
    year are considered. `exclude_id` skips the record being updated.
    Returns the snapshot for the candidate's year as it would be after the
    write. Raises a LandUtilizationError subclass otherwise.
    """
    season = normalize_season(candidate.season)
    candidate = candidate.model_copy(update={"season": season})

    if candidate.area is None or candidate.area <= 0:
        raise InvalidAreaError("Crop area must be greater than zero.", requested_area=candidate.area)

    same_year = [
        a for a in existing
        if a.crop_year == candidate.crop_year and (exclude_id is None or a.id != exclude_id)
    ]
    claiming = [a for a in same_year if a.claims_season]

    if any(_same_season(a.season, season) for a in claiming):
        raise DuplicateSeasonError(
            f"A {season} crop already exists for this field in {candidate.crop_year}.",
            season=season, crop_year=candidate.crop_year,
        )

    if season == WHOLE_YEAR and claiming:
        raise SeasonConflictError(
            f'You cannot add a "{WHOLE_YEAR}" crop while {KHARIF}/{RABI} crops exist for this field in {candidate.crop_year}.',
            season=season, crop_year=candidate.crop_year,
            conflicting_seasons=sorted({a.season for a in claiming}),
        )
    if season != WHOLE_YEAR and any(_same_season(a.season, WHOLE_YEAR) for a in claiming):
        raise SeasonConflictError(
            f'You cannot add a {season} crop while a "{WHOLE_YEAR}" crop exists for this field in {candidate.crop_year}.',
            season=season, crop_year=candidate.crop_year,
            conflicting_seasons=[WHOLE_YEAR],
        )

    before = build_snapshot(total_area, same_year)
    requested = _round(candidate.area)
    if _round(before.occupied_area + requested) > before.total_area:
        shortfall = _round(before.occupied_area + requested - before.total_area)
        log.info(f"Land utilization exceeded: total={before.total_area}, occupied={before.occupied_area}, requested={requested}")
        raise AreaExceededError(
            f"Insufficient land. Field total area: {before.total_area}, already occupied in {candidate.crop_year}: "
            f"{before.occupied_area}, available: {before.remaining_area}, requested: {requested}.",
            total_area=before.total_area,
            occupied_before=before.occupied_area,
            remaining_before=before.remaining_area,
            requested_area=requested,
            shortfall=shortfall,
        )

    return build_snapshot(total_area, same_year + [candidate])
