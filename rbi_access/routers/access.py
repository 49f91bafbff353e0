"""Access decision endpoints"""

from fastapi import APIRouter, Depends

from rbi_access.auth import get_principal, verify_api_key
from rbi_access.observability.metrics import ACCESS_DECISIONS
from rbi_access.schemas.access import DecisionRequest, DecisionResponse, PrincipalSummary
from rbi_access.services.policy import AnyPrincipal, Attribution, Principal, decide

router = APIRouter()


def _summary(principal: AnyPrincipal) -> PrincipalSummary:
    if isinstance(principal, Principal):
        return PrincipalSummary(
            identity=principal.identity,
            role=principal.role,
            access_level=principal.access_level.value,
            assigned_code=principal.assigned_code,
            resolved=True,
        )
    return PrincipalSummary(
        identity=principal.identity,
        role=principal.role,
        resolved=False,
        reason=principal.reason,
    )


@router.post("/decide", response_model=DecisionResponse)
async def decide_access(
    request: DecisionRequest,
    api_key: str = Depends(verify_api_key),
    principal: AnyPrincipal = Depends(get_principal),
):
    """Evaluate the access policy for the calling principal and a record attribution"""
    attribution = Attribution(
        barangay_code=request.barangay_code,
        city_code=request.city_code,
        province_code=request.province_code,
        region_code=request.region_code,
        mutable=request.mutable,
    )
    decision = decide(principal, attribution)

    level = principal.access_level.value if isinstance(principal, Principal) else "unresolved"
    ACCESS_DECISIONS.labels(access_level=level, decision=decision.value).inc()

    return DecisionResponse(
        principal=_summary(principal),
        decision=decision.value,
        can_read=decision.can_read,
        can_write=decision.can_write,
    )
