# routers/admin.py
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload, selectinload

import models
import schemas
import auth_utils
from auth_utils import Principal
from database import get_db
from services import commit_or_500, apply_admin_approval, apply_admin_rejection, ensure_field_rejectable

log = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    dependencies=[Depends(auth_utils.get_current_admin)],
)


# --- Dashboard ---
@router.get("/dashboard", response_model=Dict[str, Any])
def dashboard(db: Session = Depends(get_db)):
    crops_by_status = dict(
        db.query(models.CropData.status, func.count(models.CropData.id))
        .group_by(models.CropData.status)
        .all()
    )
    diseases = db.query(models.DiseaseDetection).filter(
        ~func.lower(models.DiseaseDetection.disease_name).contains("healthy")
    )
    severity = dict(
        diseases.with_entities(models.DiseaseDetection.severity, func.count(models.DiseaseDetection.id))
        .group_by(models.DiseaseDetection.severity)
        .all()
    )
    approved_area = (
        db.query(func.coalesce(func.sum(models.Field.area), 0))
        .filter(models.Field.status == models.STATUS_ADMIN_APPROVED)
        .scalar()
    )
    return {
        "total_farmers": db.query(models.Farmer).count(),
        "total_employees": db.query(models.Employee).count(),
        "total_fields": db.query(models.Field).count(),
        "approved_fields": db.query(models.Field).filter(models.Field.status == models.STATUS_ADMIN_APPROVED).count(),
        "pending_admin_approval": (
            db.query(models.Field).filter(models.Field.status == models.STATUS_EMPLOYEE_VERIFIED).count()
            + crops_by_status.get(models.STATUS_EMPLOYEE_VERIFIED, 0)
        ),
        "crops_by_status": {name: crops_by_status.get(name, 0) for name in models.CROP_STATUSES},
        "disease_detections": diseases.count(),
        "severity_breakdown": {name: severity.get(name, 0) for name in ("high", "medium", "low")},
        "approved_area": round(float(approved_area or 0), 2),
    }


# --- Employees ---
def _employee_or_404(db: Session, employee_id: int) -> models.Employee:
    employee = db.get(models.Employee, employee_id)
    if employee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")
    return employee


def _username_taken(db: Session, username: str, exclude_id: Optional[int] = None) -> bool:
    query = db.query(models.Employee).filter(models.Employee.username == username)
    if exclude_id is not None:
        query = query.filter(models.Employee.id != exclude_id)
    return query.first() is not None


@router.get("/employees", response_model=List[schemas.StaffProfile])
def list_employees(db: Session = Depends(get_db)):
    return db.query(models.Employee).order_by(models.Employee.created_at.desc(), models.Employee.id.desc()).all()


@router.post("/employees", response_model=schemas.StaffProfile, status_code=status.HTTP_201_CREATED)
def create_employee(
    data: schemas.EmployeeCreate,
    principal: Principal = Depends(auth_utils.get_current_admin),
    db: Session = Depends(get_db),
):
    if _username_taken(db, data.username):
        log.warning(f"Employee creation failed: username '{data.username}' already exists.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already exists")

    employee = models.Employee(
        username=data.username,
        name=data.name,
        email=data.email,
        hashed_password=auth_utils.hash_password(data.password),
        role=auth_utils.ROLE_EMPLOYEE,
        created_by=principal.id,
    )
    try:
        db.add(employee)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already exists")
    db.refresh(employee)
    log.info(f"Admin {principal.id} created employee {employee.id} ('{employee.username}')")
    return employee


@router.get("/employees/{employee_id}", response_model=schemas.EmployeeDetail)
def read_employee(employee_id: int, db: Session = Depends(get_db)):
    employee = _employee_or_404(db, employee_id)
    uploaded = db.query(models.CropData).filter(
        models.CropData.submitted_by == employee.id,
        models.CropData.source == models.SOURCE_EMPLOYEE_UPLOAD,
    )
    detail = schemas.EmployeeDetail.model_validate(employee)
    detail.verified_fields = db.query(models.Field).filter(models.Field.employee_verified_by == employee.id).count()
    detail.uploaded_crops = uploaded.count()
    detail.approved_crops = uploaded.filter(models.CropData.status == models.STATUS_ADMIN_APPROVED).count()
    return detail


@router.patch("/employees/{employee_id}", response_model=schemas.StaffProfile)
def update_employee(employee_id: int, data: schemas.EmployeeUpdate, db: Session = Depends(get_db)):
    employee = _employee_or_404(db, employee_id)
    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    if "username" in updates and _username_taken(db, updates["username"], exclude_id=employee.id):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already exists")

    password = updates.pop("password", None)
    if password:
        employee.hashed_password = auth_utils.hash_password(password)
    for key, value in updates.items():
        setattr(employee, key, value)
    commit_or_500(db, "update employee")
    db.refresh(employee)
    log.info(f"Employee {employee.id} updated (password changed: {password is not None})")
    return employee


@router.delete("/employees/{employee_id}", response_model=schemas.MessageResponse)
def delete_employee(employee_id: int, db: Session = Depends(get_db)):
    employee = _employee_or_404(db, employee_id)
    db.delete(employee)
    commit_or_500(db, "delete employee")
    log.info(f"Employee {employee_id} deleted")
    return {"message": "Employee deleted"}


# --- Farmers ---
@router.get("/farmers", response_model=List[schemas.FarmerSummary])
def list_farmers(
    search: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    field_count = (
        db.query(models.Field.farmer_id, func.count(models.Field.id).label("field_count"))
        .group_by(models.Field.farmer_id)
        .subquery()
    )
    query = (
        db.query(models.Farmer, func.coalesce(field_count.c.field_count, 0))
        .outerjoin(field_count, field_count.c.farmer_id == models.Farmer.id)
    )
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(models.Farmer.name.ilike(pattern), models.Farmer.phone.like(pattern)))
    rows = query.order_by(models.Farmer.created_at.desc(), models.Farmer.id.desc()).limit(limit).all()

    farmers = []
    for farmer, count in rows:
        summary = schemas.FarmerSummary.model_validate(farmer)
        summary.field_count = count
        farmers.append(summary)
    return farmers


@router.get("/farmers/{farmer_id}", response_model=schemas.FarmerDetail)
def read_farmer(farmer_id: int, db: Session = Depends(get_db)):
    farmer = (
        db.query(models.Farmer)
        .options(selectinload(models.Farmer.fields).joinedload(models.Field.mandal),
                 selectinload(models.Farmer.fields).joinedload(models.Field.village))
        .filter(models.Farmer.id == farmer_id)
        .first()
    )
    if farmer is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Farmer not found")
    return farmer


# --- Approvals ---
def _status_or_400(value: Optional[str], allowed) -> Optional[str]:
    if value and value not in allowed:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown status '{value}'")
    return value


@router.get("/fields", response_model=List[schemas.FieldOut])
def list_fields(status_filter: Optional[str] = Query(None, alias="status"), db: Session = Depends(get_db)):
    query = db.query(models.Field).options(joinedload(models.Field.mandal), joinedload(models.Field.village))
    if _status_or_400(status_filter, models.FIELD_STATUSES):
        query = query.filter(models.Field.status == status_filter)
    return query.order_by(models.Field.created_at.desc(), models.Field.id.desc()).all()


@router.get("/crops", response_model=List[schemas.CropDataOut])
def list_crops(status_filter: Optional[str] = Query(None, alias="status"), db: Session = Depends(get_db)):
    query = db.query(models.CropData).options(joinedload(models.CropData.crop), joinedload(models.CropData.field))
    if _status_or_400(status_filter, models.CROP_STATUSES):
        query = query.filter(models.CropData.status == status_filter)
    return query.order_by(models.CropData.created_at.desc(), models.CropData.id.desc()).all()


def _field_or_404(db: Session, field_id: int, lock: bool = False) -> models.Field:
    field = db.get(models.Field, field_id, with_for_update=lock)
    if field is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Field not found")
    return field


def _crop_or_404(db: Session, crop_data_id: int) -> models.CropData:
    crop = db.get(models.CropData, crop_data_id)
    if crop is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Crop not found")
    return crop


@router.patch("/fields/{field_id}/approve", response_model=schemas.FieldOut)
def approve_field(field_id: int, principal: Principal = Depends(auth_utils.get_current_admin), db: Session = Depends(get_db)):
    field = _field_or_404(db, field_id)
    apply_admin_approval(field, principal.id, "field")
    commit_or_500(db, "approve field")
    db.refresh(field)
    log.info(f"Admin {principal.id} approved field {field.id}")
    return field


@router.patch("/fields/{field_id}/reject", response_model=schemas.FieldOut)
def reject_field(
    field_id: int,
    data: schemas.RejectRequest,
    principal: Principal = Depends(auth_utils.get_current_admin),
    db: Session = Depends(get_db),
):
    field = _field_or_404(db, field_id, lock=True)
    ensure_field_rejectable(db, field)
    apply_admin_rejection(field, principal.id, data.rejection_reason, "field")
    commit_or_500(db, "reject field")
    db.refresh(field)
    log.info(f"Admin {principal.id} rejected field {field.id}")
    return field


@router.patch("/crops/{crop_data_id}/approve", response_model=schemas.CropDataOut)
def approve_crop(crop_data_id: int, principal: Principal = Depends(auth_utils.get_current_admin), db: Session = Depends(get_db)):
    crop = _crop_or_404(db, crop_data_id)
    apply_admin_approval(crop, principal.id, "crop")
    commit_or_500(db, "approve crop")
    db.refresh(crop)
    log.info(f"Admin {principal.id} approved crop record {crop.id}")
    return crop


@router.patch("/crops/{crop_data_id}/reject", response_model=schemas.CropDataOut)
def reject_crop(
    crop_data_id: int,
    data: schemas.RejectRequest,
    principal: Principal = Depends(auth_utils.get_current_admin),
    db: Session = Depends(get_db),
):
    crop = _crop_or_404(db, crop_data_id)
    apply_admin_rejection(crop, principal.id, data.rejection_reason, "crop")
    commit_or_500(db, "reject crop")
    db.refresh(crop)
    log.info(f"Admin {principal.id} rejected crop record {crop.id}; its season slot and area are released")
    return crop


# --- Profile ---
@router.get("/profile", response_model=schemas.StaffProfile)
def read_profile(principal: Principal = Depends(auth_utils.get_current_admin)):
    return principal.record


@router.patch("/profile", response_model=schemas.StaffProfile)
def update_profile(
    data: schemas.AdminProfileUpdate,
    principal: Principal = Depends(auth_utils.get_current_admin),
    db: Session = Depends(get_db),
):
    admin: models.Admin = principal.record
    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")
    if "username" in updates:
        taken = (
            db.query(models.Admin)
            .filter(models.Admin.username == updates["username"], models.Admin.id != admin.id)
            .first()
        )
        if taken:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already exists")
    for key, value in updates.items():
        setattr(admin, key, value)
    commit_or_500(db, "update admin profile")
    db.refresh(admin)
    log.info(f"Admin {admin.id} updated profile fields: {sorted(updates)}")
    return admin


@router.post("/profile/change-password", response_model=schemas.MessageResponse)
def change_password(
    data: schemas.PasswordChange,
    principal: Principal = Depends(auth_utils.get_current_admin),
    db: Session = Depends(get_db),
):
    admin: models.Admin = principal.record
    if not auth_utils.verify_password(data.old_password, admin.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")
    admin.hashed_password = auth_utils.hash_password(data.new_password)
    commit_or_500(db, "change admin password")
    log.info(f"Admin {admin.id} changed password.")
    return {"message": "Password changed successfully"}
