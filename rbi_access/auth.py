"""Authentication utilities"""

from typing import Optional

from fastapi import Depends, HTTPException, Header

from rbi_access.config import settings
from rbi_access.errors import ErrorCode
from rbi_access.services.geography import GeographyReferenceStore, get_geography_store
from rbi_access.services.policy import AccessLevel, AnyPrincipal, Principal, resolve_principal


async def verify_api_key(x_api_key: Optional[str] = Header(None)) -> str:
    """Verify API key from header"""
    if not x_api_key:
        raise HTTPException(
            status_code=401,
            detail={"code": "MISSING_API_KEY", "message": "API key required"}
        )

    valid_keys = settings.get_api_keys()
    if x_api_key not in valid_keys:
        raise HTTPException(
            status_code=401,
            detail={"code": "INVALID_API_KEY", "message": "Invalid API key"}
        )

    return x_api_key


def get_geography() -> GeographyReferenceStore:
    """Dependency returning the process-wide reference store, loaded on first use"""
    return get_geography_store()


def get_principal(
    x_principal_id: Optional[str] = Header(None),
    x_principal_role: Optional[str] = Header(None),
    x_principal_code: Optional[str] = Header(None),
    geography: GeographyReferenceStore = Depends(get_geography),
) -> AnyPrincipal:
    """
    Principal claims forwarded by the authenticating gateway.

    Credentials are verified upstream; a malformed claim set resolves to an
    UnresolvedPrincipal rather than an error.
    """
    return resolve_principal(x_principal_id, x_principal_role, x_principal_code or None, geography)


def require_operator(principal: AnyPrincipal = Depends(get_principal)) -> Principal:
    """Only national and super principals may run data-wide diagnostics"""
    if not isinstance(principal, Principal):
        raise HTTPException(
            status_code=403,
            detail={"code": ErrorCode.PRINCIPAL_UNRESOLVED.value, "message": principal.reason}
        )
    if principal.access_level not in (AccessLevel.NATIONAL, AccessLevel.SUPER):
        raise HTTPException(
            status_code=403,
            detail={"code": ErrorCode.ACCESS_DENIED.value, "message": "Operator access required"}
        )
    return principal
