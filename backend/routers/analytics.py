# routers/analytics.py
import logging
from collections import Counter, OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Tuple

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

import models
import schemas
import auth_utils
from auth_utils import Principal
from database import get_db

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])
admin_router = APIRouter(
    prefix="/api/admin/analytics",
    tags=["Admin Analytics"],
    dependencies=[Depends(auth_utils.get_current_admin)],
)

SEVERITY_ORDER = ("high", "medium", "low")


def _chart(pairs) -> Dict[str, list]:
    pairs = list(pairs)
    return {"labels": [label for label, _ in pairs], "data": [value for _, value in pairs]}


def _latest_verified_crops(db: Session, farmer_id: int) -> List[Tuple[models.Field, models.CropData]]:
    """(field, crop) for each verified field of the farmer, using the field's latest verified crop."""
    rows = (
        db.query(models.CropData)
        .join(models.Field, models.CropData.field_id == models.Field.id)
        .options(joinedload(models.CropData.crop), joinedload(models.CropData.field))
        .filter(
            models.Field.farmer_id == farmer_id,
            models.Field.verified.is_(True),
            models.CropData.verified.is_(True),
        )
        .order_by(models.CropData.crop_year.desc(), models.CropData.updated_at.desc(), models.CropData.id.desc())
        .all()
    )
    latest = OrderedDict()
    for crop in rows:
        latest.setdefault(crop.field_id, (crop.field, crop))
    return list(latest.values())


# --- Farmer Charts ---
@router.get("/crop-distribution", response_model=schemas.ChartData)
def crop_distribution(principal: Principal = Depends(auth_utils.get_current_farmer), db: Session = Depends(get_db)):
    counts = Counter(crop.crop_name for _, crop in _latest_verified_crops(db, principal.id))
    return _chart(counts.most_common())


@router.get("/field-size-by-crop", response_model=schemas.ChartData)
def field_size_by_crop(principal: Principal = Depends(auth_utils.get_current_farmer), db: Session = Depends(get_db)):
    totals = Counter()
    for field, crop in _latest_verified_crops(db, principal.id):
        totals[crop.crop_name] += field.area
    return _chart((name, round(area, 2)) for name, area in totals.most_common())


@router.get("/status-breakdown", response_model=schemas.ChartData)
def status_breakdown(principal: Principal = Depends(auth_utils.get_current_farmer), db: Session = Depends(get_db)):
    rows = (
        db.query(models.Field.status, func.count(models.Field.id))
        .filter(models.Field.farmer_id == principal.id)
        .group_by(models.Field.status)
        .order_by(models.Field.status)
        .all()
    )
    return _chart(rows)


@router.get("/area-distribution", response_model=schemas.ChartData)
def area_distribution(principal: Principal = Depends(auth_utils.get_current_farmer), db: Session = Depends(get_db)):
    rows = (
        db.query(models.Field.field_name, models.Field.area)
        .filter(models.Field.farmer_id == principal.id, models.Field.verified.is_(True))
        .order_by(models.Field.area.desc(), models.Field.id)
        .all()
    )
    return _chart(rows)


# --- Admin Analytics ---
def _month_key(value: datetime) -> str:
    return value.strftime("%b %Y")


@admin_router.get("/fields", response_model=Dict[str, Any])
def fields_analytics(db: Session = Depends(get_db)):
    status_rows = (
        db.query(models.Field.status, func.count(models.Field.id))
        .group_by(models.Field.status)
        .all()
    )
    mandal_rows = (
        db.query(models.Mandal.name, func.count(models.Field.id), func.coalesce(func.sum(models.Field.area), 0))
        .outerjoin(models.Field, models.Field.mandal_id == models.Mandal.id)
        .group_by(models.Mandal.name)
        .order_by(func.count(models.Field.id).desc(), models.Mandal.name)
        .limit(10)
        .all()
    )
    soil_rows = (
        db.query(models.Field.soil_type, func.count(models.Field.id))
        .filter(models.Field.soil_type.isnot(None))
        .group_by(models.Field.soil_type)
        .order_by(func.count(models.Field.id).desc())
        .all()
    )

    since = datetime.now(timezone.utc) - timedelta(days=365)
    monthly = OrderedDict()
    created = db.query(models.Field.created_at).order_by(models.Field.created_at).all()
    for (created_at,) in created:
        if created_at is None:
            continue
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if created_at >= since:
            key = _month_key(created_at)
            monthly[key] = monthly.get(key, 0) + 1

    return {
        "status_distribution": [{"name": name, "count": count} for name, count in status_rows],
        "mandal_distribution": [
            {"mandal": name, "count": count, "total_area": round(float(area or 0), 2)}
            for name, count, area in mandal_rows
        ],
        "soil_distribution": [{"soil_type": soil, "count": count} for soil, count in soil_rows],
        "monthly_trend": [{"month": month, "count": count} for month, count in monthly.items()],
    }


@admin_router.get("/crops", response_model=Dict[str, Any])
def crops_analytics(db: Session = Depends(get_db)):
    crop_rows = (
        db.query(models.Crop.name, func.count(models.CropData.id), func.coalesce(func.sum(models.CropData.area), 0))
        .join(models.CropData, models.CropData.crop_id == models.Crop.id)
        .group_by(models.Crop.name)
        .order_by(func.count(models.CropData.id).desc(), models.Crop.name)
        .limit(15)
        .all()
    )
    season_rows = (
        db.query(models.CropData.season, func.count(models.CropData.id), func.coalesce(func.sum(models.CropData.area), 0))
        .group_by(models.CropData.season)
        .order_by(models.CropData.season)
        .all()
    )
    status_rows = (
        db.query(models.CropData.status, func.count(models.CropData.id))
        .group_by(models.CropData.status)
        .all()
    )
    yearly_rows = (
        db.query(models.CropData.crop_year, func.count(models.CropData.id))
        .group_by(models.CropData.crop_year)
        .order_by(models.CropData.crop_year.desc())
        .limit(5)
        .all()
    )
    return {
        "crop_distribution": [
            {"crop_name": name, "count": count, "total_area": round(float(area or 0), 2)}
            for name, count, area in crop_rows
        ],
        "season_distribution": [
            {"name": season, "count": count, "total_area": round(float(area or 0), 2)}
            for season, count, area in season_rows
        ],
        "status_distribution": [{"name": name, "count": count} for name, count in status_rows],
        "yearly_trends": [{"year": year, "count": count} for year, count in reversed(yearly_rows)],
    }


@admin_router.get("/diseases", response_model=Dict[str, Any])
def disease_analytics(db: Session = Depends(get_db)):
    not_healthy = ~func.lower(models.DiseaseDetection.disease_name).contains("healthy")

    disease_rows = (
        db.query(
            models.DiseaseDetection.disease_name,
            func.count(models.DiseaseDetection.id),
            func.avg(models.DiseaseDetection.confidence_score),
        )
        .filter(not_healthy)
        .group_by(models.DiseaseDetection.disease_name)
        .order_by(func.count(models.DiseaseDetection.id).desc(), models.DiseaseDetection.disease_name)
        .limit(15)
        .all()
    )
    severity = dict(
        db.query(models.DiseaseDetection.severity, func.count(models.DiseaseDetection.id))
        .filter(not_healthy)
        .group_by(models.DiseaseDetection.severity)
        .all()
    )
    alerts = (
        db.query(models.DiseaseDetection)
        .options(
            joinedload(models.DiseaseDetection.field).joinedload(models.Field.farmer),
            joinedload(models.DiseaseDetection.crop_data).joinedload(models.CropData.crop),
        )
        .filter(not_healthy, models.DiseaseDetection.severity == "high")
        .order_by(models.DiseaseDetection.created_at.desc(), models.DiseaseDetection.id.desc())
        .limit(10)
        .all()
    )
    log.debug(f"Disease analytics: {len(disease_rows)} diseases, {len(alerts)} high-severity alerts")
    return {
        "disease_distribution": [
            {"disease_name": name, "count": count, "avg_confidence": round(float(avg or 0), 4)}
            for name, count, avg in disease_rows
        ],
        "severity_distribution": [
            {"name": name.capitalize(), "count": severity[name]} for name in SEVERITY_ORDER if name in severity
        ],
        "high_severity_alerts": [
            {
                "id": alert.id,
                "disease_name": alert.disease_name,
                "confidence": alert.confidence_score,
                "severity": alert.severity,
                "created_at": alert.created_at,
                "farmer_name": alert.field.farmer.name if alert.field else None,
                "field_name": alert.field.field_name if alert.field else None,
                "crop_name": alert.crop_data.crop_name if alert.crop_data else None,
            }
            for alert in alerts
        ],
    }
