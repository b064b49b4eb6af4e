# routers/farmers.py
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import models
import schemas
import auth_utils
from auth_utils import Principal, mask_phone
from database import get_db
from services import commit_or_500

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/farmers", tags=["Farmer Profile"])


@router.get("/me", response_model=schemas.FarmerProfile)
async def read_my_profile(principal: Principal = Depends(auth_utils.get_current_farmer)):
    log.info(f"Profile request for farmer: {principal.id}")
    return principal.record


@router.put("/me", response_model=schemas.FarmerProfile)
async def update_my_profile(
    data: schemas.FarmerUpdate,
    principal: Principal = Depends(auth_utils.get_current_farmer),
    db: Session = Depends(get_db),
):
    farmer: models.Farmer = principal.record
    updates = data.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No fields to update")

    if "phone" in updates and updates["phone"] != farmer.phone:
        taken = db.query(models.Farmer).filter(models.Farmer.phone == updates["phone"]).first()
        if taken:
            log.warning(f"Profile update for farmer {farmer.id}: phone {mask_phone(updates['phone'])} already registered.")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Phone number already registered")

    mandal_id = updates.get("mandal_id", farmer.mandal_id)
    village_id = updates.get("village_id", farmer.village_id)
    if "mandal_id" in updates or "village_id" in updates:
        village = db.get(models.Village, village_id) if village_id is not None else None
        if village is None or village.mandal_id != mandal_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Village does not belong to the selected mandal")

    for key, value in updates.items():
        setattr(farmer, key, value)
    commit_or_500(db, "update profile")
    db.refresh(farmer)
    log.info(f"Farmer {farmer.id} updated profile fields: {sorted(updates)}")
    return farmer


@router.post("/me/change-password", response_model=schemas.MessageResponse)
async def change_my_password(
    data: schemas.PasswordChange,
    principal: Principal = Depends(auth_utils.get_current_farmer),
    db: Session = Depends(get_db),
):
    farmer: models.Farmer = principal.record
    if not auth_utils.verify_password(data.old_password, farmer.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Current password is incorrect")
    farmer.hashed_password = auth_utils.hash_password(data.new_password)
    commit_or_500(db, "change password")
    log.info(f"Farmer {farmer.id} changed password.")
    return {"message": "Password changed successfully"}
