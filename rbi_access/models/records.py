"""Household and resident records carrying geographic attribution"""

import uuid
from datetime import datetime

from sqlalchemy import Column, String, Integer, Boolean, Date, DateTime, ForeignKey, Index

from rbi_access.database import Base


class Household(Base):
    """Family unit; geographic source of truth for its residents"""

    __tablename__ = "households"

    code = Column(String(50), primary_key=True)

    # Geographic attribution (one consistent PSGC chain)
    barangay_code = Column(String(10), nullable=False)
    city_code = Column("city_municipality_code", String(10), nullable=False)
    province_code = Column(String(10), nullable=True)  # NULL only for independent cities
    region_code = Column(String(10), nullable=False)

    # Address and composition
    name = Column(String(200), nullable=True)
    house_number = Column(String(50), nullable=True)
    street_name = Column(String(200), nullable=True)
    subdivision = Column(String(200), nullable=True)
    household_head_id = Column(String(36), nullable=True)
    member_count = Column(Integer, nullable=False, default=0)

    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_households_barangay", "barangay_code"),
        Index("idx_households_city", "city_municipality_code"),
        Index("idx_households_province", "province_code"),
        Index("idx_households_region", "region_code"),
    )

    def __repr__(self):
        return f"<Household(code='{self.code}', barangay_code='{self.barangay_code}')>"


class Resident(Base):
    """Person record with codes mirrored from its household"""

    __tablename__ = "residents"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    household_code = Column(String(50), ForeignKey("households.code"), nullable=True)

    # Denormalized attribution, equal to the household's whenever household_code is set
    barangay_code = Column(String(10), nullable=False)
    city_code = Column("city_municipality_code", String(10), nullable=False)
    province_code = Column(String(10), nullable=True)
    region_code = Column(String(10), nullable=False)

    # Personal attributes
    first_name = Column(String(100), nullable=False)
    middle_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=False)
    birthdate = Column(Date, nullable=True)
    sex = Column(String(10), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_residents_household", "household_code"),
        Index("idx_residents_barangay", "barangay_code"),
        Index("idx_residents_city", "city_municipality_code"),
        Index("idx_residents_province", "province_code"),
        Index("idx_residents_region", "region_code"),
    )

    def __repr__(self):
        return f"<Resident(id='{self.id}', household_code='{self.household_code}')>"


# Tables carrying geographic attribution, filtered by both enforcement paths
SCOPED_MODELS = (Household, Resident)
