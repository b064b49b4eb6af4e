# routers/crops.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

import models
import schemas
import auth_utils
from auth_utils import Principal, ROLE_EMPLOYEE
from database import get_db
from land_utilization import CropAllocation
from services import (
    commit_or_500, get_field_for, get_crop_for, get_catalog_crop, ensure_unverified,
    check_land, field_snapshot, apply_employee_review,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/crops", tags=["Crops"])


def _with_names(query):
    return query.options(joinedload(models.CropData.crop), joinedload(models.CropData.field))


@router.get("", response_model=List[schemas.CropDataOut], summary="The farmer's crop records")
def list_my_crops(principal: Principal = Depends(auth_utils.get_current_farmer), db: Session = Depends(get_db)):
    return (
        _with_names(db.query(models.CropData))
        .join(models.Field, models.CropData.field_id == models.Field.id)
        .filter(models.Field.farmer_id == principal.id)
        .order_by(models.CropData.crop_year.desc(), models.CropData.season.desc(), models.CropData.id.desc())
        .all()
    )


@router.post("", response_model=schemas.CropWriteResponse, status_code=status.HTTP_201_CREATED,
             summary="Add a crop record to a verified field")
def create_crop(
    data: schemas.CropDataCreate,
    principal: Principal = Depends(auth_utils.require_roles(auth_utils.ROLE_FARMER, ROLE_EMPLOYEE)),
    db: Session = Depends(get_db),
):
    # Row lock on the field serializes concurrent submissions until commit
    field = get_field_for(db, principal, data.field_id, lock=True)
    if not field.verified or field.status == models.STATUS_REJECTED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Can only add crops to verified fields")
    get_catalog_crop(db, data.crop_id)

    season = check_land(db, field, CropAllocation(season=data.season, crop_year=data.crop_year, area=data.area))

    from_employee = principal.role == ROLE_EMPLOYEE
    crop = models.CropData(
        field_id=field.id,
        crop_id=data.crop_id,
        crop_year=data.crop_year,
        season=season,
        area=data.area,
        production=data.production,
        yield_=data.yield_,
        status=models.STATUS_PENDING,
        verified=False,
        source=models.SOURCE_EMPLOYEE_UPLOAD if from_employee else models.SOURCE_FARMER,
        submitted_by=principal.id if from_employee else None,
    )
    db.add(crop)
    commit_or_500(db, "create crop record")
    db.refresh(crop)
    log.info(f"{principal.role} {principal.id} added crop record {crop.id} on field {field.id} ({season} {crop.crop_year}, area={crop.area})")
    return {
        "message": "Crop added successfully",
        "data": crop,
        "land_info": field_snapshot(db, field, crop.crop_year),
    }


@router.get("/uploaded", response_model=schemas.UploadedCropsResponse, summary="Crop records submitted by the employee")
def list_uploaded_crops(
    status_filter: Optional[str] = Query(None, alias="status"),
    season: Optional[str] = None,
    principal: Principal = Depends(auth_utils.get_current_employee),
    db: Session = Depends(get_db),
):
    base = db.query(models.CropData).filter(
        models.CropData.submitted_by == principal.id,
        models.CropData.source == models.SOURCE_EMPLOYEE_UPLOAD,
    )
    query = _with_names(base)
    if status_filter:
        query = query.filter(models.CropData.status == status_filter)
    if season:
        query = query.filter(func.lower(models.CropData.season) == season.strip().lower())
    crops = query.order_by(models.CropData.created_at.desc(), models.CropData.id.desc()).all()

    counts = dict(
        base.with_entities(models.CropData.status, func.count(models.CropData.id))
        .group_by(models.CropData.status)
        .all()
    )
    stats = {"total": sum(counts.values())}
    stats.update({name: counts.get(name, 0) for name in models.CROP_STATUSES})
    return {"data": crops, "stats": stats}


@router.get("/{crop_data_id}", response_model=schemas.CropDataDetail)
def read_crop(
    crop_data_id: int,
    principal: Principal = Depends(auth_utils.get_current_principal),
    db: Session = Depends(get_db),
):
    crop = get_crop_for(db, principal, crop_data_id)
    detail = schemas.CropDataDetail.model_validate(crop)
    detail.field_total_area = crop.field.area
    return detail


@router.put("/{crop_data_id}", response_model=schemas.CropWriteResponse)
def update_crop(
    crop_data_id: int,
    data: schemas.CropDataUpdate,
    principal: Principal = Depends(auth_utils.get_current_farmer),
    db: Session = Depends(get_db),
):
    crop = get_crop_for(db, principal, crop_data_id)
    field = get_field_for(db, principal, crop.field_id, lock=True)
    # Re-read under the lock so a verification committed meanwhile is seen
    db.refresh(crop)
    ensure_unverified(crop, "crop", "update")
    updates = data.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    if updates.get("crop_id") is not None:
        get_catalog_crop(db, updates["crop_id"])

    candidate = CropAllocation(
        id=crop.id,
        season=updates.get("season") or crop.season,
        crop_year=updates.get("crop_year") or crop.crop_year,
        area=updates["area"] if updates.get("area") is not None else crop.area,
    )
    season = check_land(db, field, candidate, exclude_id=crop.id)

    crop.season = season
    crop.crop_year = candidate.crop_year
    crop.area = candidate.area
    for key in ("crop_id", "production", "yield_"):
        if key in updates:
            setattr(crop, key, updates[key])
    commit_or_500(db, "update crop record")
    db.refresh(crop)
    log.info(f"Crop record {crop.id} updated: {sorted(updates)}")
    return {
        "message": "Crop updated",
        "data": crop,
        "land_info": field_snapshot(db, field, crop.crop_year),
    }


@router.delete("/{crop_data_id}", response_model=schemas.MessageResponse)
def delete_crop(
    crop_data_id: int,
    principal: Principal = Depends(auth_utils.get_current_farmer),
    db: Session = Depends(get_db),
):
    crop = get_crop_for(db, principal, crop_data_id)
    ensure_unverified(crop, "crop", "delete")
    db.delete(crop)
    commit_or_500(db, "delete crop record")
    log.info(f"Farmer {principal.id} deleted crop record {crop_data_id}")
    return {"message": "Crop deleted"}


@router.post("/{crop_data_id}/verify", response_model=schemas.CropDataOut, summary="Employee verifies or rejects a crop record")
def review_crop(
    crop_data_id: int,
    review: schemas.ReviewAction,
    principal: Principal = Depends(auth_utils.get_current_employee),
    db: Session = Depends(get_db),
):
    crop = get_crop_for(db, principal, crop_data_id)
    apply_employee_review(crop, principal.id, review.action, review.notes, review.rejection_reason, "crop")
    commit_or_500(db, "review crop record")
    db.refresh(crop)
    log.info(f"Employee {principal.id} set crop record {crop.id} to '{crop.status}'")
    return crop


@router.post("/{crop_data_id}/harvest", response_model=schemas.CropDataOut, summary="Mark an approved crop as harvested")
def harvest_crop(
    crop_data_id: int,
    principal: Principal = Depends(auth_utils.get_current_farmer),
    db: Session = Depends(get_db),
):
    crop = get_crop_for(db, principal, crop_data_id)
    if crop.status != models.STATUS_ADMIN_APPROVED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Only approved crops can be marked harvested (current status: {crop.status})",
        )
    crop.status = models.STATUS_HARVESTED
    commit_or_500(db, "mark crop harvested")
    db.refresh(crop)
    log.info(f"Crop record {crop.id} marked harvested; its area is released")
    return crop
