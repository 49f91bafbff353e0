"""Household and resident schemas used by the propagation engine"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .common import AttributionCodes


def _digits(v):
    if v is not None and (not v.isdigit() or not v.isascii()):
        raise ValueError('Geographic codes must contain only digits')
    return v


class HouseholdCreate(BaseModel):
    """New household; the barangay defaults to a barangay principal's own"""
    code: Optional[str] = Field(None, min_length=1, max_length=50, description="Household code (generated when absent)")
    barangay_code: Optional[str] = Field(None, description="Barangay the household belongs to")
    name: Optional[str] = Field(None, max_length=200)
    house_number: Optional[str] = Field(None, max_length=50)
    street_name: Optional[str] = Field(None, max_length=200)
    subdivision: Optional[str] = Field(None, max_length=200)

    @field_validator('barangay_code')
    @classmethod
    def validate_barangay_code(cls, v):
        return _digits(v)


class HouseholdUpdate(BaseModel):
    """Address, name and head changes; geographic codes change only by relocation"""
    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = Field(None, max_length=200)
    house_number: Optional[str] = Field(None, max_length=50)
    street_name: Optional[str] = Field(None, max_length=200)
    subdivision: Optional[str] = Field(None, max_length=200)
    household_head_id: Optional[str] = Field(None, max_length=36)


class ResidentCreate(BaseModel):
    """New resident; codes come from the household when one is given"""
    first_name: str = Field(..., min_length=1, max_length=100)
    middle_name: Optional[str] = Field(None, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    birthdate: Optional[date] = None
    sex: Optional[str] = Field(None, max_length=10)
    household_code: Optional[str] = Field(None, max_length=50)
    barangay_code: Optional[str] = Field(None, description="Barangay for residents without a household")

    @field_validator('barangay_code')
    @classmethod
    def validate_barangay_code(cls, v):
        return _digits(v)


class HouseholdRecord(AttributionCodes):
    """Household as stored"""
    model_config = ConfigDict(from_attributes=True)

    code: str
    name: Optional[str] = None
    house_number: Optional[str] = None
    street_name: Optional[str] = None
    subdivision: Optional[str] = None
    household_head_id: Optional[str] = None
    member_count: int = 0
    is_active: bool = True


class ResidentRecord(AttributionCodes):
    """Resident as stored"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    household_code: Optional[str] = None
    first_name: str
    middle_name: Optional[str] = None
    last_name: str
    birthdate: Optional[date] = None
    sex: Optional[str] = None
    is_active: bool = True


class RelocationResult(BaseModel):
    """Outcome of a household relocation"""
    household: HouseholdRecord
    previous: AttributionCodes
    residents_updated: int = Field(..., description="Active residents whose codes were rewritten")


class RepairResult(BaseModel):
    """Outcome of an explicit attribution repair"""
    household_code: str
    repaired_resident_ids: List[str] = Field(default_factory=list)
