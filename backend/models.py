# models.py
"""
SQLAlchemy ORM Models for the FarmFi application.

Defines the database tables for the three principal kinds (farmers,
employees, admins), location reference data, fields, planted crop
records, field images and disease detections.
"""

import logging
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Numeric, ForeignKey,
    UniqueConstraint, func
)
from sqlalchemy.orm import relationship

from database import Base

log = logging.getLogger(__name__)

# --- Workflow Status Values ---
STATUS_PENDING = "pending"
STATUS_EMPLOYEE_VERIFIED = "employee_verified"
STATUS_ADMIN_APPROVED = "admin_approved"
STATUS_REJECTED = "rejected"
STATUS_HARVESTED = "harvested"

FIELD_STATUSES = (STATUS_PENDING, STATUS_EMPLOYEE_VERIFIED, STATUS_ADMIN_APPROVED, STATUS_REJECTED)
CROP_STATUSES = FIELD_STATUSES + (STATUS_HARVESTED,)
# Records still waiting on an employee or admin decision
OPEN_STATUSES = (STATUS_PENDING, STATUS_EMPLOYEE_VERIFIED)

SOURCE_FARMER = "farmer"
SOURCE_EMPLOYEE_UPLOAD = "employee_upload"

# Areas are stored with two decimals but handled as floats in Python
Area = Numeric(10, 2, asdecimal=False)


# --- Principals ---
class Farmer(Base):
    """A farmer; logs in with phone number and password."""
    __tablename__ = 'farmers'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, comment="Farmer's full name")
    phone = Column(String(10), unique=True, index=True, nullable=False, comment="10-digit mobile number used to log in")
    hashed_password = Column(String, nullable=False)
    mandal_id = Column(Integer, ForeignKey('mandals.id'), nullable=True)
    village_id = Column(Integer, ForeignKey('villages.id'), nullable=True)
    address = Column(Text, nullable=True)
    role = Column(String(20), nullable=False, default="farmer")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    mandal = relationship("Mandal")
    village = relationship("Village")
    fields = relationship("Field", back_populates="farmer", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Farmer(id={self.id}, name='{self.name}', phone='******{self.phone[-4:]}')>"


class Employee(Base):
    """A field employee who verifies farmer submissions."""
    __tablename__ = 'employees'

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    hashed_password = Column(String, nullable=False)
    role = Column(String(20), nullable=False, default="employee")
    created_by = Column(Integer, ForeignKey('admins.id', ondelete="SET NULL"), nullable=True, comment="Admin who created the account")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Employee(id={self.id}, username='{self.username}')>"


class Admin(Base):
    """An administrator who gives final approval."""
    __tablename__ = 'admins'

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    hashed_password = Column(String, nullable=False)
    role = Column(String(20), nullable=False, default="admin")

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    last_login_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<Admin(id={self.id}, username='{self.username}')>"


# --- Location Reference Data ---
class Mandal(Base):
    __tablename__ = 'mandals'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)

    villages = relationship("Village", back_populates="mandal", order_by="Village.name")

    def __repr__(self):
        return f"<Mandal(id={self.id}, name='{self.name}')>"


class Village(Base):
    __tablename__ = 'villages'
    __table_args__ = (
        UniqueConstraint('mandal_id', 'name', name='uq_village_mandal_name'),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    mandal_id = Column(Integer, ForeignKey('mandals.id'), nullable=False, index=True)

    mandal = relationship("Mandal", back_populates="villages")

    def __repr__(self):
        return f"<Village(id={self.id}, name='{self.name}', mandal_id={self.mandal_id})>"


# --- Fields ---
class Field(Base):
    """A land parcel owned by one farmer."""
    __tablename__ = 'fields'

    id = Column(Integer, primary_key=True, index=True)
    farmer_id = Column(Integer, ForeignKey('farmers.id', ondelete="CASCADE"), nullable=False, index=True)
    field_name = Column(String(100), nullable=False)
    area = Column(Area, nullable=False, comment="Total cultivable area")
    latitude = Column(Numeric(9, 6, asdecimal=False), nullable=True)
    longitude = Column(Numeric(9, 6, asdecimal=False), nullable=True)
    mandal_id = Column(Integer, ForeignKey('mandals.id'), nullable=True)
    village_id = Column(Integer, ForeignKey('villages.id'), nullable=True)
    soil_type = Column(String(50), nullable=True)
    survey_number = Column(String(50), nullable=True)

    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    verified = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(Text, nullable=True)
    verification_notes = Column(Text, nullable=True)
    employee_verified_by = Column(Integer, ForeignKey('employees.id', ondelete="SET NULL"), nullable=True)
    admin_verified_by = Column(Integer, ForeignKey('admins.id', ondelete="SET NULL"), nullable=True)
    approval_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    farmer = relationship("Farmer", back_populates="fields")
    mandal = relationship("Mandal")
    village = relationship("Village")
    crops = relationship("CropData", back_populates="field", cascade="all, delete-orphan")

    @property
    def mandal_name(self):
        return self.mandal.name if self.mandal else None

    @property
    def village_name(self):
        return self.village.name if self.village else None

    def __repr__(self):
        return f"<Field(id={self.id}, name='{self.field_name}', area={self.area}, status='{self.status}')>"


# --- Crops ---
class Crop(Base):
    """Crop catalog entry (static lookup)."""
    __tablename__ = 'crops'

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)
    category = Column(String(50), nullable=True)

    def __repr__(self):
        return f"<Crop(id={self.id}, name='{self.name}')>"


class CropData(Base):
    """A planting record: one crop on one field for one season of a year."""
    __tablename__ = 'crop_data'

    id = Column(Integer, primary_key=True, index=True)
    field_id = Column(Integer, ForeignKey('fields.id', ondelete="CASCADE"), nullable=False, index=True)
    crop_id = Column(Integer, ForeignKey('crops.id'), nullable=False)
    crop_year = Column(Integer, nullable=False, index=True)
    season = Column(String(20), nullable=False)
    area = Column(Area, nullable=False)
    production = Column(Area, nullable=True)
    yield_ = Column("yield", Area, nullable=True)

    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    verified = Column(Boolean, nullable=False, default=False)
    rejection_reason = Column(Text, nullable=True)
    verification_notes = Column(Text, nullable=True)
    source = Column(String(20), nullable=False, default=SOURCE_FARMER)
    submitted_by = Column(Integer, ForeignKey('employees.id', ondelete="SET NULL"), nullable=True, comment="Employee who submitted the record")
    employee_verified_by = Column(Integer, ForeignKey('employees.id', ondelete="SET NULL"), nullable=True)
    admin_verified_by = Column(Integer, ForeignKey('admins.id', ondelete="SET NULL"), nullable=True)
    approval_date = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    field = relationship("Field", back_populates="crops")
    crop = relationship("Crop")

    @property
    def crop_name(self):
        return self.crop.name if self.crop else None

    @property
    def field_name(self):
        return self.field.field_name if self.field else None

    def __repr__(self):
        return (f"<CropData(id={self.id}, field_id={self.field_id}, year={self.crop_year}, "
                f"season='{self.season}', area={self.area}, status='{self.status}')>")


# --- Disease Detection ---
class FieldImage(Base):
    __tablename__ = 'field_images'

    id = Column(Integer, primary_key=True, index=True)
    field_id = Column(Integer, ForeignKey('fields.id', ondelete="CASCADE"), nullable=False, index=True)
    crop_data_id = Column(Integer, ForeignKey('crop_data.id', ondelete="SET NULL"), nullable=True)
    image_url = Column(String(512), nullable=False, comment="Object-storage key")
    image_type = Column(String(20), nullable=False, default="leaf")
    captured_at = Column(DateTime(timezone=True), server_default=func.now())

    field = relationship("Field")
    detection = relationship("DiseaseDetection", back_populates="image", uselist=False)


class DiseaseDetection(Base):
    """Result of one inference call; never updated after insert."""
    __tablename__ = 'disease_detections'

    id = Column(Integer, primary_key=True, index=True)
    image_id = Column(Integer, ForeignKey('field_images.id', ondelete="CASCADE"), nullable=False, index=True)
    field_id = Column(Integer, ForeignKey('fields.id', ondelete="CASCADE"), nullable=False, index=True)
    crop_data_id = Column(Integer, ForeignKey('crop_data.id', ondelete="SET NULL"), nullable=True)
    disease_name = Column(String(150), nullable=False)
    confidence_score = Column(Numeric(5, 4, asdecimal=False), nullable=False)
    severity = Column(String(10), nullable=False)
    recommendations = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    image = relationship("FieldImage", back_populates="detection")
    field = relationship("Field")
    crop_data = relationship("CropData")

    def __repr__(self):
        return f"<DiseaseDetection(id={self.id}, disease='{self.disease_name}', confidence={self.confidence_score})>"
