# routers/fields.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session, joinedload

import models
import schemas
import auth_utils
from auth_utils import Principal
from database import get_db
from services import (
    commit_or_500, get_field_for, ensure_unverified, apply_employee_review, field_snapshot,
    ensure_field_rejectable, peak_occupied_area,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/fields", tags=["Fields"])


def _check_location(db: Session, mandal_id: Optional[int], village_id: Optional[int]) -> None:
    if village_id is None:
        return
    village = db.get(models.Village, village_id)
    if village is None or (mandal_id is not None and village.mandal_id != mandal_id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Village does not belong to the selected mandal")


def _with_location(query):
    return query.options(joinedload(models.Field.mandal), joinedload(models.Field.village))


@router.get("", response_model=List[schemas.FieldOut], summary="The farmer's own fields, newest first")
def list_my_fields(principal: Principal = Depends(auth_utils.get_current_farmer), db: Session = Depends(get_db)):
    return (
        _with_location(db.query(models.Field))
        .filter(models.Field.farmer_id == principal.id)
        .order_by(models.Field.created_at.desc(), models.Field.id.desc())
        .all()
    )


@router.post("", response_model=schemas.FieldOut, status_code=status.HTTP_201_CREATED)
def create_field(
    data: schemas.FieldCreate,
    principal: Principal = Depends(auth_utils.get_current_farmer),
    db: Session = Depends(get_db),
):
    _check_location(db, data.mandal_id, data.village_id)
    field = models.Field(farmer_id=principal.id, status=models.STATUS_PENDING, verified=False, **data.model_dump())
    db.add(field)
    commit_or_500(db, "create field")
    db.refresh(field)
    log.info(f"Farmer {principal.id} created field {field.id} ('{field.field_name}', area={field.area})")
    return field


@router.get("/approved", response_model=List[schemas.FieldOut], summary="Fields ready for crops and disease detection")
def list_approved_fields(principal: Principal = Depends(auth_utils.get_current_farmer), db: Session = Depends(get_db)):
    return (
        _with_location(db.query(models.Field))
        .filter(
            models.Field.farmer_id == principal.id,
            models.Field.status == models.STATUS_ADMIN_APPROVED,
            models.Field.verified.is_(True),
        )
        .order_by(models.Field.created_at.desc(), models.Field.id.desc())
        .all()
    )


@router.get("/pending", response_model=List[schemas.FieldOut], summary="Fields awaiting review")
def list_pending_fields(
    status_filter: Optional[str] = Query(None, alias="status"),
    mandal_id: Optional[int] = None,
    village_id: Optional[int] = None,
    principal: Principal = Depends(auth_utils.get_current_staff),
    db: Session = Depends(get_db),
):
    query = _with_location(db.query(models.Field))
    if status_filter:
        if status_filter not in models.FIELD_STATUSES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status '{status_filter}'")
        query = query.filter(models.Field.status == status_filter)
    else:
        query = query.filter(models.Field.status.in_(models.OPEN_STATUSES))
    if mandal_id is not None:
        query = query.filter(models.Field.mandal_id == mandal_id)
    if village_id is not None:
        query = query.filter(models.Field.village_id == village_id)
    return query.order_by(models.Field.created_at.desc(), models.Field.id.desc()).all()


@router.get("/{field_id}", response_model=schemas.FieldOut)
def read_field(
    field_id: int,
    principal: Principal = Depends(auth_utils.get_current_principal),
    db: Session = Depends(get_db),
):
    return get_field_for(db, principal, field_id)


@router.put("/{field_id}", response_model=schemas.FieldOut)
def update_field(
    field_id: int,
    data: schemas.FieldUpdate,
    principal: Principal = Depends(auth_utils.get_current_farmer),
    db: Session = Depends(get_db),
):
    field = get_field_for(db, principal, field_id)
    ensure_unverified(field, "field", "update")
    updates = data.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    if "mandal_id" in updates or "village_id" in updates:
        _check_location(db, updates.get("mandal_id", field.mandal_id), updates.get("village_id", field.village_id))
    if updates.get("area") is not None:
        occupied = peak_occupied_area(db, field.id)
        if updates["area"] < occupied:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Area cannot be less than the {occupied:g} acres already under crops",
            )

    for key, value in updates.items():
        setattr(field, key, value)
    commit_or_500(db, "update field")
    db.refresh(field)
    log.info(f"Field {field.id} updated: {sorted(updates)}")
    return field


@router.delete("/{field_id}", response_model=schemas.MessageResponse)
def delete_field(
    field_id: int,
    principal: Principal = Depends(auth_utils.get_current_farmer),
    db: Session = Depends(get_db),
):
    field = get_field_for(db, principal, field_id)
    ensure_unverified(field, "field", "delete")
    verified_crops = (
        db.query(models.CropData.id)
        .filter(models.CropData.field_id == field.id, models.CropData.verified.is_(True))
        .count()
    )
    if verified_crops:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot delete a field with verified crop records")
    db.delete(field)
    commit_or_500(db, "delete field")
    log.info(f"Farmer {principal.id} deleted field {field_id}")
    return {"message": "Field deleted"}


@router.post("/{field_id}/verify", response_model=schemas.FieldOut, summary="Employee verifies or rejects a field")
def review_field(
    field_id: int,
    review: schemas.ReviewAction,
    principal: Principal = Depends(auth_utils.get_current_employee),
    db: Session = Depends(get_db),
):
    field = get_field_for(db, principal, field_id, lock=True)
    if review.action == "reject":
        ensure_field_rejectable(db, field)
    apply_employee_review(field, principal.id, review.action, review.notes, review.rejection_reason, "field")
    commit_or_500(db, "review field")
    db.refresh(field)
    log.info(f"Employee {principal.id} set field {field.id} to '{field.status}'")
    return field


@router.get("/{field_id}/land-info", response_model=schemas.LandInfo, summary="Land utilization of a field")
def read_land_info(
    field_id: int,
    crop_year: Optional[int] = None,
    principal: Principal = Depends(auth_utils.get_current_principal),
    db: Session = Depends(get_db),
):
    field = get_field_for(db, principal, field_id)
    snapshot = field_snapshot(db, field, crop_year)
    return schemas.LandInfo(field_id=field.id, field_name=field.field_name, crop_year=crop_year, **snapshot.model_dump())
