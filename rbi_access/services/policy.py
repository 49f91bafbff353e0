"""
Access Policy Model.

A pure mapping (principal, attribution) -> Decision. The level -> column
mapping and the Scope value built here are the only definition of the
geographic rule: the SQL predicate builder, the ORM declarative hook and
the PostgreSQL policy renderer all consume `scope_for()` / `SCOPE_COLUMNS`.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import structlog

from rbi_access.services.geography import GeoChain, GeoLevel, GeographyReferenceStore

logger = structlog.get_logger()


class AccessLevel(str, Enum):
    """Role-derived geographic access level; SUPER sits outside the ordering"""
    BARANGAY = "barangay"
    CITY = "city"
    PROVINCE = "province"
    REGION = "region"
    NATIONAL = "national"
    SUPER = "super"

    @property
    def rank(self) -> Optional[int]:
        """Position in barangay < city < province < region < national"""
        return _LEVEL_RANKS.get(self)

    def is_wider_than(self, other: "AccessLevel") -> bool:
        if self.rank is None or other.rank is None:
            return False
        return self.rank > other.rank


_LEVEL_RANKS = {
    AccessLevel.BARANGAY: 0,
    AccessLevel.CITY: 1,
    AccessLevel.PROVINCE: 2,
    AccessLevel.REGION: 3,
    AccessLevel.NATIONAL: 4,
}

ROLE_ACCESS_LEVELS: Dict[str, AccessLevel] = {
    "super_admin": AccessLevel.SUPER,
    "national_admin": AccessLevel.NATIONAL,
    "region_admin": AccessLevel.REGION,
    "province_admin": AccessLevel.PROVINCE,
    "city_admin": AccessLevel.CITY,
    "barangay_admin": AccessLevel.BARANGAY,
    "barangay_staff": AccessLevel.BARANGAY,
}

# Attribution attribute compared against the assigned code, per level
SCOPE_COLUMNS: Dict[AccessLevel, str] = {
    AccessLevel.BARANGAY: "barangay_code",
    AccessLevel.CITY: "city_code",
    AccessLevel.PROVINCE: "province_code",
    AccessLevel.REGION: "region_code",
}

# Reference level an assigned code must have
ASSIGNED_CODE_LEVELS: Dict[AccessLevel, GeoLevel] = {
    AccessLevel.BARANGAY: GeoLevel.BARANGAY,
    AccessLevel.CITY: GeoLevel.CITY,
    AccessLevel.PROVINCE: GeoLevel.PROVINCE,
    AccessLevel.REGION: GeoLevel.REGION,
}

UNRESTRICTED_LEVELS = (AccessLevel.NATIONAL, AccessLevel.SUPER)


class Decision(str, Enum):
    """Outcome of a policy evaluation; ALLOW_WRITE implies read"""
    ALLOW_WRITE = "ALLOW_WRITE"
    ALLOW_READ = "ALLOW_READ"
    DENY = "DENY"

    @property
    def can_read(self) -> bool:
        return self in (Decision.ALLOW_READ, Decision.ALLOW_WRITE)

    @property
    def can_write(self) -> bool:
        return self == Decision.ALLOW_WRITE


@dataclass(frozen=True)
class Principal:
    """A verified official with a resolved level and assigned scope"""
    identity: str
    role: str
    access_level: AccessLevel
    assigned_code: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.access_level, AccessLevel):
            raise TypeError(f"access_level must be an AccessLevel, got {self.access_level!r}")
        if self.access_level in UNRESTRICTED_LEVELS:
            if self.assigned_code is not None:
                raise ValueError(f"{self.access_level.value} principals carry no assigned code")
        elif not self.assigned_code:
            raise ValueError(f"{self.access_level.value} principals require an assigned code")

    @property
    def is_resolved(self) -> bool:
        return True

    @classmethod
    def system(cls, identity: str = "system") -> "Principal":
        """Super principal for internal diagnostics and repairs"""
        return cls(identity=identity, role="super_admin", access_level=AccessLevel.SUPER)


@dataclass(frozen=True)
class UnresolvedPrincipal:
    """A principal that failed resolution; every decision for it is DENY"""
    identity: Optional[str]
    role: Optional[str]
    reason: str
    access_level: None = None
    assigned_code: None = None

    @property
    def is_resolved(self) -> bool:
        return False


AnyPrincipal = Union[Principal, UnresolvedPrincipal]


@dataclass(frozen=True)
class Attribution:
    """The four geographic codes stamped on a record"""
    barangay_code: Optional[str]
    city_code: Optional[str]
    province_code: Optional[str]
    region_code: Optional[str]
    mutable: bool = True

    @classmethod
    def of(cls, record: Any, mutable: bool = True) -> "Attribution":
        """Read attribution off a Household, Resident or any object with the four attributes"""
        return cls(
            barangay_code=getattr(record, "barangay_code", None),
            city_code=getattr(record, "city_code", None),
            province_code=getattr(record, "province_code", None),
            region_code=getattr(record, "region_code", None),
            mutable=mutable,
        )

    @classmethod
    def from_chain(cls, chain: GeoChain, mutable: bool = True) -> "Attribution":
        return cls(
            barangay_code=chain.barangay_code,
            city_code=chain.city_code,
            province_code=chain.province_code,
            region_code=chain.region_code,
            mutable=mutable,
        )

    def codes(self) -> Dict[str, Optional[str]]:
        return {
            "barangay_code": self.barangay_code,
            "city_code": self.city_code,
            "province_code": self.province_code,
            "region_code": self.region_code,
        }


class ScopeKind(str, Enum):
    ALL = "all"
    NONE = "none"
    MATCH = "match"


@dataclass(frozen=True)
class Scope:
    """What a principal may see: everything, nothing, or one column equal to one code"""
    kind: ScopeKind
    column: Optional[str] = None
    code: Optional[str] = None

    def matches(self, attribution: Attribution) -> bool:
        if self.kind == ScopeKind.ALL:
            return True
        if self.kind == ScopeKind.NONE:
            return False
        value = getattr(attribution, self.column)
        # Exact match only; None never equals a code
        return value is not None and value == self.code


DENY_ALL = Scope(kind=ScopeKind.NONE)
ALLOW_ALL = Scope(kind=ScopeKind.ALL)


def scope_for(principal: AnyPrincipal) -> Scope:
    """Translate a principal into its visible scope, failing closed"""
    if not isinstance(principal, Principal):
        return DENY_ALL

    level = principal.access_level
    if level in UNRESTRICTED_LEVELS:
        return ALLOW_ALL

    column = SCOPE_COLUMNS.get(level)
    if column is None or not principal.assigned_code:
        return DENY_ALL
    return Scope(kind=ScopeKind.MATCH, column=column, code=principal.assigned_code)


def decide(principal: AnyPrincipal, attribution: Attribution) -> Decision:
    """
    Decide read/write access for a principal on a record.

    Never raises: any evaluation failure is logged and resolves to DENY.
    """
    try:
        if not scope_for(principal).matches(attribution):
            return Decision.DENY
        if not attribution.mutable:
            return Decision.ALLOW_READ
        return Decision.ALLOW_WRITE
    except Exception as e:
        logger.error(
            "Policy evaluation failed, denying",
            principal=getattr(principal, "identity", None),
            error=str(e),
            exc_info=True,
        )
        return Decision.DENY


def decide_relocation(principal: AnyPrincipal, old: Attribution, new: Attribution) -> Decision:
    """Relocation needs WRITE on both the current and the target scope"""
    if decide(principal, old).can_write and decide(principal, new).can_write:
        return Decision.ALLOW_WRITE
    return Decision.DENY


def resolve_principal(
    identity: Optional[str],
    role: Optional[str],
    assigned_code: Optional[str],
    geography: GeographyReferenceStore,
) -> AnyPrincipal:
    """
    Resolve verified claims into a Principal.

    Unknown roles, missing codes, codes of the wrong level and codes that
    do not resolve to a full chain all yield an UnresolvedPrincipal.
    """
    if not identity:
        return _unresolved(identity, role, "missing identity")
    if not role:
        return _unresolved(identity, role, "missing role")

    access_level = ROLE_ACCESS_LEVELS.get(role)
    if access_level is None:
        return _unresolved(identity, role, f"role {role!r} has no access level mapping")

    if access_level in UNRESTRICTED_LEVELS:
        if assigned_code:
            return _unresolved(identity, role, f"{access_level.value} principals carry no assigned code")
        return Principal(identity=identity, role=role, access_level=access_level)

    if not assigned_code:
        return _unresolved(identity, role, f"{access_level.value} principal has no assigned code")

    expected = ASSIGNED_CODE_LEVELS[access_level]
    actual = geography.level_of(assigned_code)
    if actual is None:
        return _unresolved(identity, role, f"assigned code {assigned_code!r} not found")
    if actual != expected:
        return _unresolved(
            identity, role,
            f"assigned code {assigned_code!r} is a {actual.value} code, expected {expected.value}",
        )
    if not geography.walk_chain(assigned_code).is_valid:
        return _unresolved(identity, role, f"assigned code {assigned_code!r} has no resolvable parent chain")

    return Principal(identity=identity, role=role, access_level=access_level, assigned_code=assigned_code)


def _unresolved(identity: Optional[str], role: Optional[str], reason: str) -> UnresolvedPrincipal:
    logger.warning("Principal unresolved", identity=identity, role=role, reason=reason)
    return UnresolvedPrincipal(identity=identity, role=role, reason=reason)
