"""
Test configuration and fixtures for the RBI access test suite.

Every test runs against a fresh in-memory SQLite schema. The application
and privileged session factories share one StaticPool engine, so both
enforcement paths see the same rows.
"""

import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.pop("PRIVILEGED_DATABASE_URL", None)
os.environ["RLS_ENABLED"] = "false"
os.environ["API_KEYS"] = "test-key-123,admin-key-456"
os.environ["RATE_LIMIT_PER_MINUTE"] = "1000"

from typing import Callable, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select, update

import rbi_access.models  # noqa: F401
from rbi_access.database import Base, engine
from rbi_access.models.geography import GeoBarangay, GeoCityMunicipality, GeoProvince, GeoRegion
from rbi_access.models.records import Household, Resident
from rbi_access.services.enforcement import build_filter_predicate, principal_session, privileged_session
from rbi_access.services.geography import GeoLevel, GeoNode, GeographyReferenceStore, set_geography_store
from rbi_access.services.policy import Principal, resolve_principal


GEO_NODES = [
    GeoNode("04", GeoLevel.REGION, "CALABARZON"),
    GeoNode("13", GeoLevel.REGION, "National Capital Region"),
    GeoNode("0421", GeoLevel.PROVINCE, "Cavite", parent_code="04"),
    GeoNode("0434", GeoLevel.PROVINCE, "Laguna", parent_code="04"),
    GeoNode("0421140", GeoLevel.CITY, "City of Imus", parent_code="0421", region_code="04"),
    GeoNode("0421150", GeoLevel.CITY, "Kawit", parent_code="0421", region_code="04"),
    GeoNode("0434010", GeoLevel.CITY, "City of Calamba", parent_code="0434", region_code="04"),
    GeoNode("1339000", GeoLevel.CITY, "City of Manila", region_code="13", is_independent=True),
    GeoNode("042114014", GeoLevel.BARANGAY, "Bucandala I", parent_code="0421140"),
    GeoNode("042114099", GeoLevel.BARANGAY, "Toclong II-B", parent_code="0421140"),
    GeoNode("042115001", GeoLevel.BARANGAY, "Batong Dalig", parent_code="0421150"),
    GeoNode("043401001", GeoLevel.BARANGAY, "Bagong Kalsada", parent_code="0434010"),
    GeoNode("133900001", GeoLevel.BARANGAY, "Barangay 1", parent_code="1339000"),
]

CHAINS = {
    "042114014": {"barangay_code": "042114014", "city_code": "0421140", "province_code": "0421", "region_code": "04"},
    "042114099": {"barangay_code": "042114099", "city_code": "0421140", "province_code": "0421", "region_code": "04"},
    "042115001": {"barangay_code": "042115001", "city_code": "0421150", "province_code": "0421", "region_code": "04"},
    "043401001": {"barangay_code": "043401001", "city_code": "0434010", "province_code": "0434", "region_code": "04"},
    "133900001": {"barangay_code": "133900001", "city_code": "1339000", "province_code": None, "region_code": "13"},
}

SYSTEM_FILTER = build_filter_predicate(Principal.system("test-suite"))


def _reference_rows(nodes: List[GeoNode]) -> list:
    rows = []
    for node in nodes:
        if node.level == GeoLevel.REGION:
            rows.append(GeoRegion(code=node.code, name=node.name))
        elif node.level == GeoLevel.PROVINCE:
            rows.append(GeoProvince(code=node.code, name=node.name, region_code=node.parent_code))
        elif node.level == GeoLevel.CITY:
            rows.append(GeoCityMunicipality(
                code=node.code, name=node.name, province_code=node.parent_code,
                region_code=node.region_code, type="city", is_independent=node.is_independent,
            ))
        else:
            rows.append(GeoBarangay(code=node.code, name=node.name, city_municipality_code=node.parent_code))
    return rows


@pytest.fixture(autouse=True)
def database():
    """Fresh schema per test"""
    Base.metadata.create_all(bind=engine)
    set_geography_store(None)
    yield engine
    set_geography_store(None)
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def reference_store() -> GeographyReferenceStore:
    """In-memory reference store, no database"""
    return GeographyReferenceStore(GEO_NODES)


@pytest.fixture
def geography(database) -> GeographyReferenceStore:
    """Reference tables seeded and the process-wide store loaded from them"""
    with privileged_session() as db:
        db.add_all(_reference_rows(GEO_NODES))
        db.commit()
        store = GeographyReferenceStore.from_session(db)
    set_geography_store(store)
    return store


@pytest.fixture
def make_principal(reference_store) -> Callable:
    """Resolve a principal against the test hierarchy"""

    def _make(role: str, code: Optional[str] = None, identity: str = "official-1"):
        return resolve_principal(identity, role, code, reference_store)

    return _make


@pytest.fixture
def seed_household(database) -> Callable:
    """Insert a household and its residents directly, bypassing propagation"""

    def _seed(code: str, barangay_code: str, residents: int = 0, **fields) -> List[str]:
        chain = CHAINS[barangay_code]
        ids = []
        with privileged_session() as db:
            db.add(Household(**{"code": code, "member_count": residents, "is_active": True, **chain, **fields}))
            for n in range(residents):
                resident = Resident(
                    household_code=code,
                    first_name=f"Member{n + 1}",
                    last_name="Dela Cruz",
                    is_active=True,
                    **chain,
                )
                db.add(resident)
                db.flush()
                ids.append(resident.id)
            db.commit()
        return ids

    return _seed


@pytest.fixture
def seed_resident(database) -> Callable:
    """Insert a resident without a household"""

    def _seed(barangay_code: str, first_name: str = "Juan") -> str:
        with privileged_session() as db:
            resident = Resident(first_name=first_name, last_name="Santos", is_active=True, **CHAINS[barangay_code])
            db.add(resident)
            db.flush()
            resident_id = resident.id
            db.commit()
        return resident_id

    return _seed


@pytest.fixture
def inject_drift(database) -> Callable:
    """Overwrite a resident's codes without touching its household"""

    def _inject(resident_id: str, **codes) -> None:
        with privileged_session() as db:
            stmt = update(Resident).where(Resident.id == resident_id).values(**codes)
            db.execute(SYSTEM_FILTER.apply(stmt, Resident).execution_options(synchronize_session=False))
            db.commit()

    return _inject


@pytest.fixture
def fetch(database) -> Callable:
    """Read rows with the system filter in a fresh session"""

    def _fetch(model, *criteria) -> List[Dict]:
        with privileged_session() as db:
            stmt = select(model).where(*criteria)
            rows = db.execute(SYSTEM_FILTER.apply(stmt, model)).scalars().all()
            return [
                {c.key: getattr(row, c.key) for c in model.__mapper__.column_attrs}
                for row in rows
            ]

    return _fetch


@pytest.fixture
def visible_ids() -> Callable:
    """Resident ids visible to a principal through the declarative path"""

    def _visible(principal) -> set:
        with principal_session(principal) as db:
            return set(db.execute(select(Resident.id)).scalars())

    return _visible


@pytest.fixture
def api_key() -> str:
    """Provide a valid API key for authenticated requests"""
    return "test-key-123"


@pytest.fixture
def client(api_key: str, geography) -> TestClient:
    """FastAPI TestClient with default auth headers"""
    from rbi_access.main import app

    with TestClient(app) as test_client:
        default_headers: Dict[str, str] = {
            "X-API-Key": api_key,
        }

        original_request = test_client.request

        def request_with_auth(method, url, **kwargs):  # type: ignore[override]
            headers = kwargs.pop("headers", None) or {}
            merged_headers = {**default_headers, **headers}
            return original_request(method, url, headers=merged_headers, **kwargs)

        test_client.request = request_with_auth  # type: ignore[assignment]
        yield test_client


@pytest.fixture
def bare_client(geography) -> TestClient:
    """TestClient without any default headers"""
    from rbi_access.main import app

    with TestClient(app) as test_client:
        yield test_client


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test"
    )
    config.addinivalue_line(
        "markers", "unit: mark test as unit test"
    )
