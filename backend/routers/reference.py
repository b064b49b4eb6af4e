# routers/reference.py
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

import models
import schemas
from database import get_db

router = APIRouter(prefix="/api", tags=["Reference Data"])


@router.get("/mandals", response_model=List[schemas.MandalOut])
def list_mandals(db: Session = Depends(get_db)):
    return db.query(models.Mandal).order_by(models.Mandal.name).all()


@router.get("/mandals/{mandal_id}/villages", response_model=List[schemas.VillageOut])
def list_villages(mandal_id: int, db: Session = Depends(get_db)):
    if db.get(models.Mandal, mandal_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Mandal not found")
    return (
        db.query(models.Village)
        .filter(models.Village.mandal_id == mandal_id)
        .order_by(models.Village.name)
        .all()
    )


@router.get("/crop-catalog", response_model=List[schemas.CropCatalogOut])
def list_crop_catalog(db: Session = Depends(get_db)):
    return db.query(models.Crop).order_by(models.Crop.name).all()
