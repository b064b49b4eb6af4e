# routers/field_images.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

import models
import schemas
import auth_utils
from auth_utils import Principal, ROLE_FARMER
from database import get_db
from inference import DiseasePredictor, InferenceError, get_disease_predictor
from services import commit_or_500, get_field_for
from storage import S3ImageStore, StorageError, get_image_store, SIGNED_URL_TTL_SECONDS, VIEW_URL_TTL_SECONDS

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/field-images", tags=["Disease Detection"])

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png"}
MAX_IMAGE_BYTES = 10 * 1024 * 1024


def _verified_crop_for(db: Session, field_id: int, crop_data_id: Optional[int]) -> Optional[models.CropData]:
    """The requested verified crop on the field, or the field's latest verified crop."""
    query = (
        db.query(models.CropData)
        .options(joinedload(models.CropData.crop))
        .filter(models.CropData.field_id == field_id, models.CropData.verified.is_(True))
    )
    if crop_data_id is not None:
        return query.filter(models.CropData.id == crop_data_id).first()
    return query.order_by(models.CropData.crop_year.desc(), models.CropData.updated_at.desc(), models.CropData.id.desc()).first()


def _discard_image(store: S3ImageStore, key: str) -> None:
    try:
        store.delete(key)
    except StorageError:
        log.error(f"Stored image {key} could not be removed")


@router.post("/upload-and-predict", response_model=schemas.PredictionResult, status_code=status.HTTP_201_CREATED)
def upload_and_predict(
    field_id: int = Form(...),
    crop_id: Optional[int] = Form(None, description="crop_data record id; defaults to the latest verified crop"),
    image: UploadFile = File(..., description="Leaf image (JPEG or PNG)"),
    principal: Principal = Depends(auth_utils.get_current_farmer),
    db: Session = Depends(get_db),
    store: S3ImageStore = Depends(get_image_store),
    predictor: DiseasePredictor = Depends(get_disease_predictor),
):
    if image.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Only JPG and PNG images are accepted.")
    image_bytes = image.file.read()
    if not image_bytes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Uploaded image is empty.")
    if len(image_bytes) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Image is larger than 10 MB.")

    field = get_field_for(db, principal, field_id)
    if field.status != models.STATUS_ADMIN_APPROVED or not field.verified:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Field not approved/verified")

    crop = _verified_crop_for(db, field.id, crop_id)
    if crop is None or not crop.crop_name:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No verified crop found for this field. Please add crop data first.",
        )

    try:
        key = store.upload(image_bytes, image.filename, image.content_type)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    try:
        prediction = predictor.predict(image_bytes, crop.crop_name)
    except InferenceError as e:
        log.warning(f"Prediction failed for field {field.id}: {e}; discarding stored image {key}")
        _discard_image(store, key)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    try:
        field_image = models.FieldImage(field_id=field.id, crop_data_id=crop.id, image_url=key, image_type="leaf")
        db.add(field_image)
        db.flush()
        detection = models.DiseaseDetection(
            image_id=field_image.id,
            field_id=field.id,
            crop_data_id=crop.id,
            disease_name=prediction.disease,
            confidence_score=prediction.confidence,
            severity=prediction.severity,
            recommendations=prediction.recommendations,
        )
        db.add(detection)
        commit_or_500(db, "save disease detection")
    except (SQLAlchemyError, HTTPException):
        db.rollback()
        log.warning(f"Detection for field {field.id} was not saved; discarding stored image {key}")
        _discard_image(store, key)
        raise
    log.info(f"Detection {detection.id} saved for field {field.id}: {prediction.disease} ({prediction.severity})")

    return {
        "image_id": field_image.id,
        "detection_id": detection.id,
        "image_url": store.signed_url(key, SIGNED_URL_TTL_SECONDS),
        "prediction": prediction.disease,
        "confidence": prediction.confidence,
        "severity": prediction.severity,
        "recommendations": prediction.recommendations,
        "crop": crop.crop_name,
    }


@router.get("/history", response_model=List[schemas.PredictionHistoryItem])
def prediction_history(
    principal: Principal = Depends(auth_utils.get_current_farmer),
    db: Session = Depends(get_db),
    store: S3ImageStore = Depends(get_image_store),
):
    detections = (
        db.query(models.DiseaseDetection)
        .join(models.Field, models.DiseaseDetection.field_id == models.Field.id)
        .options(
            joinedload(models.DiseaseDetection.image),
            joinedload(models.DiseaseDetection.field),
            joinedload(models.DiseaseDetection.crop_data).joinedload(models.CropData.crop),
        )
        .filter(models.Field.farmer_id == principal.id)
        .order_by(models.DiseaseDetection.created_at.desc(), models.DiseaseDetection.id.desc())
        .all()
    )

    history = []
    for detection in detections:
        try:
            url = store.signed_url(detection.image.image_url, SIGNED_URL_TTL_SECONDS)
        except StorageError:
            url = None
        history.append(schemas.PredictionHistoryItem(
            image_id=detection.image_id,
            image_url=url,
            captured_at=detection.image.captured_at,
            field_id=detection.field_id,
            field_name=detection.field.field_name,
            crop_name=detection.crop_data.crop_name if detection.crop_data else None,
            disease_name=detection.disease_name,
            confidence_score=detection.confidence_score,
            severity=detection.severity,
            recommendations=detection.recommendations,
            detected_at=detection.created_at,
        ))
    log.info(f"Returning {len(history)} detections for farmer {principal.id}")
    return history


@router.get("/{image_id}/view", summary="Redirect to a short-lived signed URL for an image")
def view_image(
    image_id: int,
    principal: Principal = Depends(auth_utils.get_current_principal),
    db: Session = Depends(get_db),
    store: S3ImageStore = Depends(get_image_store),
):
    field_image = db.get(models.FieldImage, image_id)
    if field_image is None or (principal.role == ROLE_FARMER and field_image.field.farmer_id != principal.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Image not found")
    try:
        url = store.signed_url(field_image.image_url, VIEW_URL_TTL_SECONDS)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return RedirectResponse(url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
