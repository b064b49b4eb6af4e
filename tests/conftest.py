import os

# Must be set before the application modules are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret-key"
os.environ["LAMBDA_URL"] = "http://inference.test/predict"

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

import auth_utils
import models
from database import Base, SessionLocal, engine
from inference import InferenceError, Prediction, get_disease_predictor, recommendations_for
from main import app
from seed import seed_crop_catalog, seed_locations
from storage import build_image_key, get_image_store

PASSWORD = "secret123"
PASSWORD_HASH = auth_utils.hash_password(PASSWORD)
CROP_YEAR = 2024


class FakeImageStore:
    def __init__(self):
        self.objects = {}
        self.deleted = []

    def upload(self, data, filename, content_type):
        key = build_image_key(filename, 1700000000000 + len(self.objects) + len(self.deleted))
        self.objects[key] = data
        return key

    def signed_url(self, key, expires_in=86400):
        return f"https://signed.example/{key}?expires={expires_in}"

    def delete(self, key):
        self.objects.pop(key, None)
        self.deleted.append(key)


class FakePredictor:
    def __init__(self):
        self.calls = []
        self.error = None
        self.result = Prediction("Rice___Brown_Spot", 0.91, "high", recommendations_for("Rice___Brown_Spot", "high"))

    def predict(self, image_bytes, crop_name):
        self.calls.append(crop_name)
        if self.error:
            raise InferenceError(self.error)
        return self.result


def bearer(role, record):
    return {"Authorization": f"Bearer {auth_utils.issue_token(role, record)}"}


@pytest.fixture
def world():
    """Fresh schema with reference data, one admin, one employee and two farmers."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_locations(db)
        seed_crop_catalog(db)
        db.flush()
        allagadda = db.query(models.Mandal).filter(models.Mandal.name == "Allagadda").one()
        atmakur = db.query(models.Mandal).filter(models.Mandal.name == "Atmakur").one()
        village = db.query(models.Village).filter(models.Village.mandal_id == allagadda.id).order_by(models.Village.name).first()
        foreign_village = db.query(models.Village).filter(models.Village.mandal_id == atmakur.id).first()

        admin = models.Admin(username="admin", name="Administrator", hashed_password=PASSWORD_HASH, role="admin")
        db.add(admin)
        db.flush()
        employee = models.Employee(username="ravi", name="Ravi", hashed_password=PASSWORD_HASH, role="employee", created_by=admin.id)
        farmer = models.Farmer(
            name="Lakshmi", phone="9876543210", hashed_password=PASSWORD_HASH,
            mandal_id=allagadda.id, village_id=village.id, role="farmer",
        )
        other_farmer = models.Farmer(
            name="Suresh", phone="9123456780", hashed_password=PASSWORD_HASH,
            mandal_id=allagadda.id, village_id=village.id, role="farmer",
        )
        db.add_all([employee, farmer, other_farmer])
        db.commit()

        ns = SimpleNamespace(
            mandal_id=allagadda.id,
            village_id=village.id,
            foreign_village_id=foreign_village.id,
            crops={crop.name: crop.id for crop in db.query(models.Crop).all()},
            admin_id=admin.id,
            employee_id=employee.id,
            farmer_id=farmer.id,
            other_farmer_id=other_farmer.id,
            admin_headers=bearer("admin", admin),
            employee_headers=bearer("employee", employee),
            farmer_headers=bearer("farmer", farmer),
            other_farmer_headers=bearer("farmer", other_farmer),
        )
    finally:
        db.close()
    yield ns


@pytest.fixture
def image_store():
    return FakeImageStore()


@pytest.fixture
def predictor():
    return FakePredictor()


@pytest.fixture
def client(world, image_store, predictor):
    app.dependency_overrides[get_image_store] = lambda: image_store
    app.dependency_overrides[get_disease_predictor] = lambda: predictor
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def make_field(client, world):
    """Creates a field as the farmer and walks it to `status`."""
    def _make(area=10.0, name="North Plot", status="admin_approved", headers=None):
        response = client.post(
            "/api/fields",
            json={"field_name": name, "area": area, "mandal_id": world.mandal_id, "village_id": world.village_id},
            headers=headers or world.farmer_headers,
        )
        assert response.status_code == 201, response.text
        field_id = response.json()["id"]
        if status in ("employee_verified", "admin_approved"):
            response = client.post(f"/api/fields/{field_id}/verify", json={"action": "verify"}, headers=world.employee_headers)
            assert response.status_code == 200, response.text
        if status == "admin_approved":
            response = client.patch(f"/api/admin/fields/{field_id}/approve", headers=world.admin_headers)
            assert response.status_code == 200, response.text
        return field_id
    return _make


@pytest.fixture
def add_crop(client, world):
    def _add(field_id, season, area, crop="Paddy", crop_year=CROP_YEAR, headers=None):
        return client.post(
            "/api/crops",
            json={"field_id": field_id, "crop_id": world.crops[crop], "crop_year": crop_year, "season": season, "area": area},
            headers=headers or world.farmer_headers,
        )
    return _add


@pytest.fixture
def approve_crop(client, world):
    def _approve(crop_data_id):
        response = client.post(f"/api/crops/{crop_data_id}/verify", json={"action": "verify"}, headers=world.employee_headers)
        assert response.status_code == 200, response.text
        response = client.patch(f"/api/admin/crops/{crop_data_id}/approve", headers=world.admin_headers)
        assert response.status_code == 200, response.text
        return response.json()
    return _approve
