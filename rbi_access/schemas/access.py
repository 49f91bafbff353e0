"""Access decision schemas"""

from typing import Optional

from pydantic import BaseModel, Field

from .common import AttributionCodes


class DecisionRequest(AttributionCodes):
    """Attribution of the record being accessed"""
    mutable: bool = Field(default=True, description="False for read-only reference rows")


class PrincipalSummary(BaseModel):
    identity: Optional[str] = None
    role: Optional[str] = None
    access_level: Optional[str] = None
    assigned_code: Optional[str] = None
    resolved: bool
    reason: Optional[str] = Field(None, description="Why resolution failed")


class DecisionResponse(BaseModel):
    """Decision for one principal and attribution"""
    principal: PrincipalSummary
    decision: str
    can_read: bool
    can_write: bool
