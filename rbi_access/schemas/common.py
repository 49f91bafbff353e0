"""Common Pydantic schemas"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Machine-readable error"""
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error context")


class ErrorResponse(BaseModel):
    """Error response schema"""
    error: ErrorDetail
    trace_id: Optional[str] = Field(None, description="Request run ID")


class AttributionCodes(BaseModel):
    """The four geographic codes of a record"""
    barangay_code: Optional[str] = Field(None, description="PSGC barangay code")
    city_code: Optional[str] = Field(None, description="PSGC city/municipality code")
    province_code: Optional[str] = Field(None, description="PSGC province code (absent for independent cities)")
    region_code: Optional[str] = Field(None, description="PSGC region code")
