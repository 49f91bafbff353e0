"""
Geography Reference Store.

Holds the static PSGC hierarchy in memory, loaded once from the reference
tables, and answers code -> level and code -> parent-chain lookups for the
policy model, the propagation engine and the diagnostics.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from rbi_access.errors import CodeIntegrityError, InvalidGeographicCodeError
from rbi_access.models.geography import GeoRegion, GeoProvince, GeoCityMunicipality, GeoBarangay

logger = structlog.get_logger()


class GeoLevel(str, Enum):
    """Level of a PSGC code"""
    REGION = "region"
    PROVINCE = "province"
    CITY = "city"
    BARANGAY = "barangay"


class IssueSeverity(str, Enum):
    """Severity of a reference-data finding"""
    ERROR = "error"
    WARN = "warn"


@dataclass(frozen=True)
class GeoNode:
    """One reference row, flattened"""
    code: str
    level: GeoLevel
    name: str
    parent_code: Optional[str] = None
    # Cities only
    region_code: Optional[str] = None
    is_independent: bool = False


@dataclass(frozen=True)
class GeoChain:
    """Resolved codes from a node up to its region"""
    region_code: str
    province_code: Optional[str] = None
    city_code: Optional[str] = None
    barangay_code: Optional[str] = None

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "barangay_code": self.barangay_code,
            "city_code": self.city_code,
            "province_code": self.province_code,
            "region_code": self.region_code,
        }


@dataclass(frozen=True)
class IntegrityIssue:
    """A gap or anomaly found while walking a parent chain"""
    code: str
    severity: IssueSeverity
    message: str


@dataclass
class ChainResolution:
    """Chain walk result: the chain when complete, plus every issue seen"""
    code: str
    level: Optional[GeoLevel]
    chain: Optional[GeoChain]
    issues: List[IntegrityIssue] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.chain is not None and not any(i.severity == IssueSeverity.ERROR for i in self.issues)


def canonicalize_code(raw) -> str:
    """
    Canonicalize a PSGC code at ingestion time.

    Codes are opaque digit strings. Numbers are rejected outright because a
    numeric round trip drops leading zeros ("042114014" -> 42114014).
    """
    if raw is None:
        raise InvalidGeographicCodeError("Geographic code is missing")
    if isinstance(raw, bool) or isinstance(raw, (int, float)):
        raise InvalidGeographicCodeError(
            f"Geographic code {raw!r} must be ingested as text; numeric values lose leading zeros"
        )
    code = str(raw).strip()
    if not code:
        raise InvalidGeographicCodeError("Geographic code is empty")
    if not code.isdigit() or not code.isascii():
        raise InvalidGeographicCodeError(f"Geographic code {raw!r} must contain only digits")
    return code


class GeographyReferenceStore:
    """Immutable in-memory PSGC hierarchy"""

    def __init__(self, nodes: List[GeoNode]):
        self._nodes: Dict[str, GeoNode] = {}
        for node in nodes:
            if node.code in self._nodes:
                # Codes are unique across all four PSGC tables
                raise CodeIntegrityError(node.code, "code appears at more than one level")
            self._nodes[node.code] = node

    @classmethod
    def from_session(cls, db: Session) -> "GeographyReferenceStore":
        """Load all four reference tables"""
        nodes: List[GeoNode] = []
        for region in db.execute(select(GeoRegion)).scalars():
            nodes.append(GeoNode(code=region.code, level=GeoLevel.REGION, name=region.name))
        for province in db.execute(select(GeoProvince)).scalars():
            nodes.append(GeoNode(
                code=province.code, level=GeoLevel.PROVINCE, name=province.name,
                parent_code=province.region_code,
            ))
        for city in db.execute(select(GeoCityMunicipality)).scalars():
            nodes.append(GeoNode(
                code=city.code, level=GeoLevel.CITY, name=city.name,
                parent_code=city.province_code, region_code=city.region_code,
                is_independent=bool(city.is_independent),
            ))
        for barangay in db.execute(select(GeoBarangay)).scalars():
            nodes.append(GeoNode(
                code=barangay.code, level=GeoLevel.BARANGAY, name=barangay.name,
                parent_code=barangay.city_municipality_code,
            ))

        store = cls(nodes)
        logger.info("Loaded geography reference store", node_count=len(nodes))
        return store

    def __len__(self) -> int:
        return len(self._nodes)

    def exists(self, code: str) -> bool:
        return code in self._nodes

    def get(self, code: str) -> Optional[GeoNode]:
        return self._nodes.get(code)

    def level_of(self, code: str) -> Optional[GeoLevel]:
        node = self._nodes.get(code)
        return node.level if node else None

    def codes_at(self, level: GeoLevel) -> List[str]:
        return sorted(code for code, node in self._nodes.items() if node.level == level)

    def walk_chain(self, code: str) -> ChainResolution:
        """Walk from a code up to its region, collecting every gap or anomaly"""
        node = self._nodes.get(code)
        if node is None:
            return ChainResolution(code=code, level=None, chain=None, issues=[
                IntegrityIssue(code, IssueSeverity.ERROR, "code not found in reference store")
            ])

        issues: List[IntegrityIssue] = []
        codes: Dict[GeoLevel, Optional[str]] = {node.level: node.code}
        current = node

        while current.level != GeoLevel.REGION:
            parent_code = current.parent_code

            if current.level == GeoLevel.CITY:
                parent_code = self._city_parent(current, issues)
                if parent_code is None:
                    break
                if self._nodes.get(parent_code) and self._nodes[parent_code].level == GeoLevel.REGION:
                    codes[GeoLevel.PROVINCE] = None
            elif parent_code is None:
                issues.append(IntegrityIssue(current.code, IssueSeverity.ERROR, f"{current.level.value} has no parent code"))
                break

            parent = self._nodes.get(parent_code)
            if parent is None:
                issues.append(IntegrityIssue(
                    current.code, IssueSeverity.ERROR,
                    f"parent {parent_code} of {current.level.value} {current.code} not found",
                ))
                break
            if not self._is_expected_parent(current, parent):
                issues.append(IntegrityIssue(
                    current.code, IssueSeverity.ERROR,
                    f"parent {parent_code} is a {parent.level.value}, not a valid parent of a {current.level.value}",
                ))
                break

            codes[parent.level] = parent.code
            current = parent

        if any(i.severity == IssueSeverity.ERROR for i in issues):
            return ChainResolution(code=code, level=node.level, chain=None, issues=issues)

        chain = GeoChain(
            region_code=codes[GeoLevel.REGION],
            province_code=codes.get(GeoLevel.PROVINCE),
            city_code=codes.get(GeoLevel.CITY),
            barangay_code=codes.get(GeoLevel.BARANGAY),
        )
        return ChainResolution(code=code, level=node.level, chain=chain, issues=issues)

    def resolve_chain(self, code: str) -> GeoChain:
        """Resolve a code to its full chain or raise CodeIntegrityError"""
        resolution = self.walk_chain(code)
        if not resolution.is_valid:
            reason = "; ".join(i.message for i in resolution.issues if i.severity == IssueSeverity.ERROR)
            raise CodeIntegrityError(code, reason or "parent chain does not resolve")
        return resolution.chain

    def resolve_barangay_chain(self, barangay_code: str) -> GeoChain:
        """Resolve a barangay code; any other level is an integrity violation"""
        level = self.level_of(barangay_code)
        if level is not None and level != GeoLevel.BARANGAY:
            raise CodeIntegrityError(barangay_code, f"expected a barangay code, got a {level.value} code")
        return self.resolve_chain(barangay_code)

    def _city_parent(self, city: GeoNode, issues: List[IntegrityIssue]) -> Optional[str]:
        """Pick the parent of a city: its province, or its region when independent"""
        if city.is_independent:
            if city.parent_code:
                issues.append(IntegrityIssue(
                    city.code, IssueSeverity.WARN, "independent city carries a province code",
                ))
                return city.parent_code
            if not city.region_code:
                issues.append(IntegrityIssue(
                    city.code, IssueSeverity.ERROR, "independent city has no region code",
                ))
                return None
            return city.region_code

        if not city.parent_code:
            issues.append(IntegrityIssue(
                city.code, IssueSeverity.ERROR, "component city/municipality has no province code",
            ))
            return None

        province = self._nodes.get(city.parent_code)
        if city.region_code and province is not None and province.parent_code != city.region_code:
            issues.append(IntegrityIssue(
                city.code, IssueSeverity.ERROR,
                f"region code {city.region_code} disagrees with province region {province.parent_code}",
            ))
        return city.parent_code

    @staticmethod
    def _is_expected_parent(child: GeoNode, parent: GeoNode) -> bool:
        expected = {
            GeoLevel.BARANGAY: (GeoLevel.CITY,),
            GeoLevel.CITY: (GeoLevel.PROVINCE, GeoLevel.REGION),
            GeoLevel.PROVINCE: (GeoLevel.REGION,),
        }
        if child.level == GeoLevel.CITY and parent.level == GeoLevel.REGION:
            return child.is_independent
        return parent.level in expected.get(child.level, ())


_store: Optional[GeographyReferenceStore] = None
_store_lock = threading.Lock()


def get_geography_store(db: Optional[Session] = None, refresh: bool = False) -> GeographyReferenceStore:
    """Return the process-wide store, loading it on first use"""
    global _store
    with _store_lock:
        if _store is None or refresh:
            if db is None:
                from rbi_access.database import PrivilegedSessionLocal
                with PrivilegedSessionLocal() as session:
                    _store = GeographyReferenceStore.from_session(session)
            else:
                _store = GeographyReferenceStore.from_session(db)
        return _store


def set_geography_store(store: Optional[GeographyReferenceStore]) -> None:
    """Replace the process-wide store (reference reloads and tests)"""
    global _store
    with _store_lock:
        _store = store
