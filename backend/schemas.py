# backend/schemas.py
from pydantic import BaseModel, ConfigDict, Field, EmailStr, field_validator
from typing import Optional, List, Literal, Any, Dict
from datetime import datetime

from land_utilization import UtilizationSnapshot

PHONE_PATTERN = r'^[6-9]\d{9}$'


# --- Base Schemas ---
class MessageResponse(BaseModel):
    message: str


class ChartData(BaseModel):
    labels: List[Any]
    data: List[Any]


# --- Token Schemas ---
class TokenData(BaseModel):
    sub: Optional[str] = None # Principal id as a string
    id: Optional[int] = None
    role: Optional[Literal['farmer', 'employee', 'admin']] = None
    phone: Optional[str] = None # Farmers only
    username: Optional[str] = None # Employees and admins only


class LoginRequest(BaseModel):
    identifier: str = Field(..., min_length=1, description="Phone for farmers, username for employees/admins")
    password: str = Field(..., min_length=1)
    user_type: Literal['farmer', 'employee', 'admin'] = Field(..., alias='userType')

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('identifier')
    @classmethod
    def strip_identifier(cls, value: str) -> str:
        return value.strip()


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: str
    user: Dict[str, Any]


class PasswordChange(BaseModel):
    old_password: str = Field(..., alias='oldPassword')
    new_password: str = Field(..., alias='newPassword', min_length=6)

    model_config = ConfigDict(populate_by_name=True)


# --- Farmer Schemas ---
class FarmerCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    phone: str = Field(..., pattern=PHONE_PATTERN)
    password: str = Field(..., min_length=6)
    mandal_id: int
    village_id: int
    address: Optional[str] = None

    @field_validator('name')
    @classmethod
    def strip_name(cls, value: str) -> str:
        return value.strip()


class FarmerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    mandal_id: Optional[int] = None
    village_id: Optional[int] = None
    address: Optional[str] = None


class FarmerProfile(BaseModel):
    id: int
    name: str
    phone: str
    mandal_id: Optional[int] = None
    village_id: Optional[int] = None
    address: Optional[str] = None
    role: str
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class FarmerSummary(FarmerProfile):
    field_count: int = 0


# --- Employee / Admin Schemas ---
class StaffProfile(BaseModel):
    id: int
    username: str
    name: Optional[str] = None
    email: Optional[str] = None
    role: str
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class EmployeeCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=6)
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None


class EmployeeUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    password: Optional[str] = Field(None, min_length=6)
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None


class EmployeeDetail(StaffProfile):
    verified_fields: int = 0
    uploaded_crops: int = 0
    approved_crops: int = 0


class AdminProfileUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None


# --- Location / Catalog Schemas ---
class VillageOut(BaseModel):
    id: int
    name: str
    mandal_id: int

    model_config = ConfigDict(from_attributes=True)


class MandalOut(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class MandalWithVillages(MandalOut):
    villages: List[VillageOut] = []


class CropCatalogOut(BaseModel):
    id: int
    name: str
    category: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# --- Field Schemas ---
class FieldCreate(BaseModel):
    field_name: str = Field(..., min_length=1, max_length=100)
    area: float = Field(..., gt=0, description="Total cultivable area")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    mandal_id: Optional[int] = None
    village_id: Optional[int] = None
    soil_type: Optional[str] = Field(None, max_length=50)
    survey_number: Optional[str] = Field(None, max_length=50)


class FieldUpdate(BaseModel):
    field_name: Optional[str] = Field(None, min_length=1, max_length=100)
    area: Optional[float] = Field(None, gt=0)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    mandal_id: Optional[int] = None
    village_id: Optional[int] = None
    soil_type: Optional[str] = Field(None, max_length=50)
    survey_number: Optional[str] = Field(None, max_length=50)


class FieldOut(BaseModel):
    id: int
    farmer_id: int
    field_name: str
    area: float
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    mandal_id: Optional[int] = None
    village_id: Optional[int] = None
    mandal_name: Optional[str] = None
    village_name: Optional[str] = None
    soil_type: Optional[str] = None
    survey_number: Optional[str] = None
    status: str
    verified: bool
    rejection_reason: Optional[str] = None
    approval_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class FarmerDetail(FarmerProfile):
    fields: List[FieldOut] = []


class ReviewAction(BaseModel):
    action: Literal['verify', 'reject']
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


class RejectRequest(BaseModel):
    rejection_reason: str = Field(..., min_length=1)


class LandInfo(UtilizationSnapshot):
    field_id: int
    field_name: str
    crop_year: Optional[int] = None


# --- Crop Schemas ---
class CropDataCreate(BaseModel):
    field_id: int
    crop_id: int
    crop_year: int = Field(..., ge=1900, le=2100)
    season: str
    area: float
    production: Optional[float] = Field(None, ge=0)
    yield_: Optional[float] = Field(None, alias='yield', ge=0)

    model_config = ConfigDict(populate_by_name=True)


class CropDataUpdate(BaseModel):
    crop_id: Optional[int] = None
    crop_year: Optional[int] = Field(None, ge=1900, le=2100)
    season: Optional[str] = None
    area: Optional[float] = None
    production: Optional[float] = Field(None, ge=0)
    yield_: Optional[float] = Field(None, alias='yield', ge=0)

    model_config = ConfigDict(populate_by_name=True)


class CropDataOut(BaseModel):
    id: int
    field_id: int
    crop_id: int
    crop_name: Optional[str] = None
    field_name: Optional[str] = None
    crop_year: int
    season: str
    area: float
    production: Optional[float] = None
    yield_: Optional[float] = Field(None, serialization_alias='yield')
    status: str
    verified: bool
    source: str
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CropDataDetail(CropDataOut):
    field_total_area: Optional[float] = None


class CropWriteResponse(BaseModel):
    message: str
    data: CropDataOut
    land_info: UtilizationSnapshot


class UploadedCropsResponse(BaseModel):
    data: List[CropDataOut]
    stats: Dict[str, int]


# --- Disease Detection Schemas ---
class PredictionResult(BaseModel):
    image_id: int
    detection_id: int
    image_url: str
    prediction: str
    confidence: float
    severity: str
    recommendations: Optional[str] = None
    crop: str


class PredictionHistoryItem(BaseModel):
    image_id: int
    image_url: Optional[str] = None
    captured_at: Optional[datetime] = None
    field_id: int
    field_name: str
    crop_name: Optional[str] = None
    disease_name: str
    confidence_score: float
    severity: str
    recommendations: Optional[str] = None
    detected_at: Optional[datetime] = None
