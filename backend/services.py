# services.py
"""
Helpers shared by the routers: ownership-checked lookups, the locked
land-allocation check, review/approval transitions and commit handling.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

import models
from auth_utils import Principal, ROLE_FARMER
from land_utilization import (
    CropAllocation, UtilizationSnapshot, LandUtilizationError, build_snapshot, check_allocation, normalize_season,
)

log = logging.getLogger(__name__)


def commit_or_500(db: Session, action: str) -> None:
    """Commits the session; on a database error rolls back and raises 500."""
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error(f"Database error while trying to {action}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Database error while trying to {action}.")


# --- Lookups ---
def field_query(db: Session, field_id: int, lock: bool = False):
    query = db.query(models.Field).filter(models.Field.id == field_id)
    if lock:
        # SELECT ... FOR UPDATE, held until the caller commits
        query = query.with_for_update()
    return query


def get_field_for(db: Session, principal: Principal, field_id: int, lock: bool = False) -> models.Field:
    """Loads a field the principal may see. Farmers only see their own."""
    field = field_query(db, field_id, lock).first()
    if field is None or (principal.role == ROLE_FARMER and field.farmer_id != principal.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Field not found")
    return field


def get_crop_for(db: Session, principal: Principal, crop_data_id: int) -> models.CropData:
    crop = (
        db.query(models.CropData)
        .options(joinedload(models.CropData.field), joinedload(models.CropData.crop))
        .filter(models.CropData.id == crop_data_id)
        .first()
    )
    if crop is None or (principal.role == ROLE_FARMER and crop.field.farmer_id != principal.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Crop not found")
    return crop


def get_catalog_crop(db: Session, crop_id: int) -> models.Crop:
    crop = db.get(models.Crop, crop_id)
    if crop is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Crop type {crop_id} not found in catalog")
    return crop


def ensure_unverified(record, kind: str, verb: str) -> None:
    if record.verified:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Cannot {verb} a verified {kind}")


# --- Land Allocation ---
def load_allocations(db: Session, field_id: int, crop_year: Optional[int] = None) -> List[CropAllocation]:
    query = (
        db.query(models.CropData)
        .options(joinedload(models.CropData.crop))
        .filter(models.CropData.field_id == field_id)
    )
    if crop_year is not None:
        query = query.filter(models.CropData.crop_year == crop_year)
    return [
        CropAllocation(
            id=row.id, season=row.season, crop_year=row.crop_year, area=row.area,
            status=row.status, crop_name=row.crop_name,
        )
        for row in query.order_by(models.CropData.created_at.desc(), models.CropData.id.desc())
    ]


def check_land(db: Session, field: models.Field, candidate: CropAllocation, exclude_id: Optional[int] = None) -> str:
    """
    Runs the land-utilization rule for `candidate` on `field` and returns the
    canonical season. The caller must hold the field row lock until commit.
    """
    existing = load_allocations(db, field.id, candidate.crop_year)
    try:
        snapshot = check_allocation(field.area, candidate, existing, exclude_id=exclude_id)
    except LandUtilizationError as e:
        log.warning(f"Crop placement rejected on field {field.id} ({e.rule}): {e.message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_detail()) from e
    log.debug(f"Field {field.id} utilization after write would be {snapshot.utilization_percentage}%")
    return normalize_season(candidate.season)


def field_snapshot(db: Session, field: models.Field, crop_year: Optional[int] = None) -> UtilizationSnapshot:
    return build_snapshot(field.area, load_allocations(db, field.id, crop_year))


def peak_occupied_area(db: Session, field_id: int) -> float:
    """Largest area held by active crop records in any single crop year."""
    per_year = {}
    for allocation in load_allocations(db, field_id):
        if allocation.occupies_area:
            per_year[allocation.crop_year] = per_year.get(allocation.crop_year, 0.0) + allocation.area
    return max(per_year.values(), default=0.0)


def ensure_field_rejectable(db: Session, field: models.Field) -> None:
    """A field carrying crop records that were not themselves rejected cannot be rejected."""
    active = (
        db.query(models.CropData.id)
        .filter(models.CropData.field_id == field.id, models.CropData.status != models.STATUS_REJECTED)
        .count()
    )
    if active:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Field has {active} active crop record(s); reject or remove them before rejecting the field",
        )


# --- Review Workflow ---
def _now():
    return datetime.now(timezone.utc)


def apply_employee_review(record, employee_id: int, action: str, notes: Optional[str], rejection_reason: Optional[str], kind: str) -> None:
    """Employee verify/reject of a field or crop record still awaiting review."""
    if action == "reject" and not (rejection_reason or "").strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Rejection reason is required when rejecting a {kind}")
    if record.status not in models.OPEN_STATUSES:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{kind.capitalize()} not found or already processed")

    record.employee_verified_by = employee_id
    record.verification_notes = notes
    if action == "verify":
        record.status = models.STATUS_EMPLOYEE_VERIFIED
        record.verified = True
        record.rejection_reason = None
    else:
        record.status = models.STATUS_REJECTED
        record.verified = False
        record.rejection_reason = rejection_reason.strip()


def apply_admin_approval(record, admin_id: int, kind: str) -> None:
    if record.status != models.STATUS_EMPLOYEE_VERIFIED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Only employee-verified {kind}s can be approved (current status: {record.status})",
        )
    record.status = models.STATUS_ADMIN_APPROVED
    record.verified = True
    record.admin_verified_by = admin_id
    record.approval_date = _now()


def apply_admin_rejection(record, admin_id: int, rejection_reason: str, kind: str) -> None:
    if record.status not in models.OPEN_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Only pending or employee-verified {kind}s can be rejected (current status: {record.status})",
        )
    record.status = models.STATUS_REJECTED
    record.verified = False
    record.rejection_reason = rejection_reason.strip()
    record.admin_verified_by = admin_id
    record.approval_date = _now()
