# routers/auth.py
import logging
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.orm import Session, selectinload

import models
import schemas
import auth_utils
from auth_utils import Principal, ROLE_FARMER, ROLE_ADMIN, mask_phone
from database import get_db

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


def profile_for(principal_role: str, record) -> dict:
    if principal_role == ROLE_FARMER:
        return schemas.FarmerProfile.model_validate(record).model_dump(mode="json")
    return schemas.StaffProfile.model_validate(record).model_dump(mode="json")


@router.post("/register", response_model=schemas.TokenResponse, status_code=status.HTTP_201_CREATED,
             summary="Register a new farmer and log them in")
async def register_farmer(data: schemas.FarmerCreate, db: Session = Depends(get_db)):
    masked_mobile = mask_phone(data.phone)
    log.info(f"Registration Attempt: phone={masked_mobile}")

    if db.query(models.Farmer).filter(models.Farmer.phone == data.phone).first():
        log.warning(f"Registration Conflict ({masked_mobile}): phone already registered.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Phone number already registered")

    village = db.get(models.Village, data.village_id)
    if village is None or village.mandal_id != data.mandal_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Village does not belong to the selected mandal")

    farmer = models.Farmer(
        name=data.name,
        phone=data.phone,
        hashed_password=auth_utils.hash_password(data.password),
        mandal_id=data.mandal_id,
        village_id=data.village_id,
        address=data.address,
        role=ROLE_FARMER,
    )
    try:
        db.add(farmer)
        db.commit()
        db.refresh(farmer)
    except IntegrityError as e:
        db.rollback()
        log.warning(f"Database Integrity Error on registration ({masked_mobile}): {e.orig}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Phone number already registered")
    except SQLAlchemyError as e:
        db.rollback()
        log.error(f"Database Commit Error during registration ({masked_mobile}): {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Database error during registration.")

    log.info(f"DATABASE: Farmer registered successfully. ID: {farmer.id}, Phone: {masked_mobile}")
    return {
        "access_token": auth_utils.issue_token(ROLE_FARMER, farmer),
        "token_type": "bearer",
        "role": ROLE_FARMER,
        "user": profile_for(ROLE_FARMER, farmer),
    }


@router.post("/login", response_model=schemas.TokenResponse, summary="Log in as farmer, employee or admin")
async def login(form_data: schemas.LoginRequest, db: Session = Depends(get_db)):
    role = form_data.user_type
    shown_identifier = mask_phone(form_data.identifier) if role == ROLE_FARMER else form_data.identifier
    log.info(f"Login Attempt: role={role}, identifier={shown_identifier}")

    record = auth_utils.authenticate(db, role, form_data.identifier, form_data.password)
    if record is None:
        log.warning(f"Login Failed ({role} {shown_identifier}): Invalid credentials.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    if role == ROLE_ADMIN:
        # Non-critical bookkeeping
        try:
            record.last_login_at = datetime.now(timezone.utc)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.error(f"Non-critical: Failed to update last_login_at for admin {record.username}: {e}")

    log.info(f"Login Successful: {role} {record.id}")
    return {
        "access_token": auth_utils.issue_token(role, record),
        "token_type": "bearer",
        "role": role,
        "user": profile_for(role, record),
    }


@router.get("/me", summary="Profile of the authenticated principal")
async def read_me(principal: Principal = Depends(auth_utils.get_current_principal)):
    return {"role": principal.role, "user": profile_for(principal.role, principal.record)}


@router.get("/locations", response_model=List[schemas.MandalWithVillages], summary="Mandals with their villages")
async def list_locations(db: Session = Depends(get_db)):
    return (
        db.query(models.Mandal)
        .options(selectinload(models.Mandal.villages))
        .order_by(models.Mandal.name)
        .all()
    )
