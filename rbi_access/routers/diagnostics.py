"""Consistency diagnostic endpoints"""

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from rbi_access.auth import get_geography, get_principal, require_operator, verify_api_key
from rbi_access.config import settings
from rbi_access.errors import ErrorCode
from rbi_access.schemas.diagnostics import CodeIntegrityReport, DriftReport, ParityReport, ParityRequest
from rbi_access.services.diagnostics import DiagnosticService
from rbi_access.services.geography import GeographyReferenceStore
from rbi_access.services.policy import AnyPrincipal, Principal

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)

RATE = f"{settings.rate_limit_per_minute}/minute"


def get_diagnostic_service(geography: GeographyReferenceStore = Depends(get_geography)) -> DiagnosticService:
    """Dependency to get a diagnostic service"""
    return DiagnosticService(geography=geography)


@router.post("/parity", response_model=ParityReport)
@limiter.limit(RATE)
async def decision_parity(
    request: Request,
    body: ParityRequest,
    api_key: str = Depends(verify_api_key),
    principal: AnyPrincipal = Depends(get_principal),
    service: DiagnosticService = Depends(get_diagnostic_service),
):
    """Compare policy, declarative and privileged decisions for the calling principal"""
    return service.check_decision_parity(principal, body.resource_ids, body.resource_type)


@router.get("/drift/{household_code}", response_model=DriftReport)
@limiter.limit(RATE)
async def attribution_drift(
    request: Request,
    household_code: str,
    api_key: str = Depends(verify_api_key),
    operator: Principal = Depends(require_operator),
    service: DiagnosticService = Depends(get_diagnostic_service),
):
    """Report residents whose codes differ from their household's"""
    report = service.check_attribution_drift(household_code)
    if report.error_code == ErrorCode.HOUSEHOLD_NOT_FOUND.value:
        raise HTTPException(
            status_code=404,
            detail={"code": report.error_code, "message": report.message}
        )
    return report


@router.get("/codes/{code}", response_model=CodeIntegrityReport)
@limiter.limit(RATE)
async def code_integrity(
    request: Request,
    code: str,
    api_key: str = Depends(verify_api_key),
    service: DiagnosticService = Depends(get_diagnostic_service),
):
    """Verify a geographic code and its parent chain"""
    return service.check_code_integrity(code)
