"""Pydantic schemas for services, API requests and responses"""

from .common import ErrorDetail, ErrorResponse, AttributionCodes
from .records import (
    HouseholdCreate, HouseholdUpdate, ResidentCreate,
    HouseholdRecord, ResidentRecord, RelocationResult, RepairResult,
)
from .access import DecisionRequest, DecisionResponse, PrincipalSummary
from .diagnostics import (
    ReportStatus, ResourceType, ParityRequest, ParityFinding, ParityReport,
    FieldMismatch, DriftFinding, DriftReport, DriftScanReport,
    IntegrityFinding, CodeIntegrityReport, IntegrityScanReport,
)

__all__ = [
    "ErrorDetail", "ErrorResponse", "AttributionCodes",
    "HouseholdCreate", "HouseholdUpdate", "ResidentCreate",
    "HouseholdRecord", "ResidentRecord", "RelocationResult", "RepairResult",
    "DecisionRequest", "DecisionResponse", "PrincipalSummary",
    "ReportStatus", "ResourceType", "ParityRequest", "ParityFinding", "ParityReport",
    "FieldMismatch", "DriftFinding", "DriftReport", "DriftScanReport",
    "IntegrityFinding", "CodeIntegrityReport", "IntegrityScanReport",
]
