"""Diagnostic report schemas"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .common import AttributionCodes


class ReportStatus(str, Enum):
    """Overall outcome of a diagnostic run"""
    OK = "ok"
    VIOLATIONS = "violations"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ResourceType(str, Enum):
    RESIDENT = "resident"
    HOUSEHOLD = "household"


class DiagnosticReport(BaseModel):
    """Fields shared by every report"""
    status: ReportStatus = ReportStatus.OK
    error_code: Optional[str] = Field(None, description="Error code when the check found violations or could not run")
    message: Optional[str] = None


class ParityRequest(BaseModel):
    """Resources to run through both enforcement paths"""
    resource_type: ResourceType = ResourceType.RESIDENT
    resource_ids: List[str] = Field(..., min_length=1, description="Resident ids or household codes")


class ParityFinding(BaseModel):
    """One resource where the enforcement paths disagreed"""
    resource_id: str
    policy_decision: str = Field(..., description="Decision from the policy model")
    policy_visible: bool
    declarative_visible: bool
    privileged_visible: bool


class ParityReport(DiagnosticReport):
    principal_id: Optional[str] = None
    resource_type: ResourceType = ResourceType.RESIDENT
    checked: int = 0
    findings: List[ParityFinding] = Field(default_factory=list)
    missing_ids: List[str] = Field(default_factory=list, description="Ids with no record at all")
    unstable_ids: List[str] = Field(
        default_factory=list, description="Ids still changing under concurrent writes after every re-observation"
    )


class FieldMismatch(BaseModel):
    field: str
    expected: Optional[str] = None
    actual: Optional[str] = None


class DriftFinding(BaseModel):
    """A resident whose codes differ from its household's"""
    resident_id: str
    mismatches: List[FieldMismatch] = Field(default_factory=list)


class DriftReport(DiagnosticReport):
    household_code: str
    expected: Optional[AttributionCodes] = None
    residents_checked: int = 0
    findings: List[DriftFinding] = Field(default_factory=list)


class DriftScanReport(DiagnosticReport):
    households_checked: int = 0
    households: List[DriftReport] = Field(default_factory=list, description="Households with drift")


class IntegrityFinding(BaseModel):
    code: str
    severity: str
    message: str


class CodeIntegrityReport(DiagnosticReport):
    code: str
    level: Optional[str] = None
    chain: Optional[AttributionCodes] = None
    findings: List[IntegrityFinding] = Field(default_factory=list)


class IntegrityScanReport(DiagnosticReport):
    codes_checked: int = 0
    findings: List[IntegrityFinding] = Field(default_factory=list)
