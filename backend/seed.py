# backend/seed.py
# Inserts the initial admin, mandals/villages and the crop catalog. Safe to run repeatedly.

import logging
import os
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

import models
from auth_utils import hash_password, ROLE_ADMIN

log = logging.getLogger(__name__)

MANDAL_VILLAGES: Dict[str, List[str]] = {
    "Allagadda": ["Battaluru", "Kotakandukur", "Obulampalle", "R.Krishnapuram", "Yadawada"],
    "Atmakur": ["Atmakur", "Indireshwaram", "Karivena", "Kurukunda", "Pinnapuram"],
}

CROP_CATALOG: List[Tuple[str, str]] = [
    ("Paddy", "Cereal"),
    ("Wheat", "Cereal"),
    ("Maize", "Cereal"),
    ("Corn", "Cereal"),
    ("Cotton", "Fibre"),
    ("Groundnut", "Oilseed"),
    ("Soybean", "Oilseed"),
    ("Sugarcane", "Cash crop"),
    ("Tomato", "Vegetable"),
    ("Potato", "Vegetable"),
    ("Bell Pepper", "Vegetable"),
    ("Grape", "Fruit"),
    ("Orange", "Fruit"),
]


def seed_admin(db: Session, username: str, password: Optional[str]) -> Optional[models.Admin]:
    existing = db.query(models.Admin).filter(models.Admin.username == username).first()
    if existing:
        log.info(f"Admin '{username}' already exists, skipping.")
        return existing
    if not password:
        log.warning("SEED_ADMIN_PASSWORD not set; initial admin not created.")
        return None
    admin = models.Admin(username=username, name="Administrator", hashed_password=hash_password(password), role=ROLE_ADMIN)
    db.add(admin)
    log.info(f"Created admin '{username}'.")
    return admin


def seed_locations(db: Session, mandal_villages: Dict[str, List[str]] = MANDAL_VILLAGES) -> None:
    for mandal_name, village_names in mandal_villages.items():
        mandal = db.query(models.Mandal).filter(models.Mandal.name == mandal_name).first()
        if mandal is None:
            mandal = models.Mandal(name=mandal_name)
            db.add(mandal)
            db.flush()
        known = {village.name for village in mandal.villages}
        for village_name in village_names:
            if village_name not in known:
                db.add(models.Village(name=village_name, mandal_id=mandal.id))
    log.info(f"Seeded {len(mandal_villages)} mandals with their villages.")


def seed_crop_catalog(db: Session, catalog: List[Tuple[str, str]] = CROP_CATALOG) -> None:
    known = {name for (name,) in db.query(models.Crop.name).all()}
    for name, category in catalog:
        if name not in known:
            db.add(models.Crop(name=name, category=category))
    log.info(f"Crop catalog holds {len(known | {name for name, _ in catalog})} crops.")


def seed(db: Session, admin_username: Optional[str] = None, admin_password: Optional[str] = None) -> None:
    seed_admin(
        db,
        admin_username or os.getenv("SEED_ADMIN_USERNAME", "admin"),
        admin_password or os.getenv("SEED_ADMIN_PASSWORD"),
    )
    seed_locations(db)
    seed_crop_catalog(db)
    db.commit()


if __name__ == "__main__":
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    from database import SessionLocal, engine

    models.Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        seed(session)
        log.info("Database seeded successfully.")
    finally:
        session.close()
