"""
PSGC reference ingestion.

Loads regions.csv, provinces.csv, cities_municipalities.csv and
barangays.csv from a directory. Every code column is read as text and
canonicalized here, once, so the policy model can compare codes with
plain string equality.
"""

from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import structlog
from sqlalchemy import delete
from sqlalchemy.orm import Session

from rbi_access.errors import InvalidGeographicCodeError
from rbi_access.models.geography import GeoRegion, GeoProvince, GeoCityMunicipality, GeoBarangay
from rbi_access.services.geography import canonicalize_code

logger = structlog.get_logger()

PSGC_FILES = {
    "regions": ("regions.csv", ["code", "name"]),
    "provinces": ("provinces.csv", ["code", "name", "region_code"]),
    "cities": ("cities_municipalities.csv", ["code", "name", "province_code"]),
    "barangays": ("barangays.csv", ["code", "name", "city_municipality_code"]),
}

TRUE_VALUES = {"true", "t", "1", "yes", "y"}


def _read_table(directory: Path, key: str) -> pd.DataFrame:
    filename, required = PSGC_FILES[key]
    path = directory / filename
    if not path.exists():
        raise FileNotFoundError(f"PSGC file not found: {path}")

    # dtype=str keeps leading zeros; keep_default_na=False keeps blanks as ""
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip().lower() for c in df.columns]

    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"{filename} is missing columns: {missing}")
    return df


def _optional_code(value: str) -> Optional[str]:
    if value is None or str(value).strip() == "":
        return None
    return canonicalize_code(value)


class PSGCLoader:
    """Loads PSGC CSV exports into the reference tables"""

    def __init__(self, db: Session):
        self.db = db
        self.rejects: List[Dict[str, str]] = []

    def load_directory(self, directory: str, replace: bool = True) -> Dict[str, int]:
        """Load all four files; returns row counts per table"""
        directory = Path(directory)
        frames = {key: _read_table(directory, key) for key in PSGC_FILES}

        if replace:
            # Children first to satisfy foreign keys
            for model in (GeoBarangay, GeoCityMunicipality, GeoProvince, GeoRegion):
                self.db.execute(delete(model))

        counts = {
            "regions": self._load_rows(frames["regions"], self._region_row, "regions"),
            "provinces": self._load_rows(frames["provinces"], self._province_row, "provinces"),
            "cities": self._load_rows(frames["cities"], self._city_row, "cities"),
            "barangays": self._load_rows(frames["barangays"], self._barangay_row, "barangays"),
        }
        self.db.flush()

        logger.info("PSGC reference data loaded", directory=str(directory), rejects=len(self.rejects), **counts)
        return counts

    def _load_rows(self, df: pd.DataFrame, builder, table: str) -> int:
        loaded = 0
        for record in df.to_dict(orient="records"):
            try:
                self.db.add(builder(record))
                loaded += 1
            except InvalidGeographicCodeError as e:
                self.rejects.append({"table": table, "code": str(record.get("code")), "reason": str(e)})
                logger.warning("Rejected PSGC row", table=table, code=record.get("code"), reason=str(e))
        return loaded

    @staticmethod
    def _region_row(record: Dict[str, str]) -> GeoRegion:
        return GeoRegion(code=canonicalize_code(record["code"]), name=record["name"].strip())

    @staticmethod
    def _province_row(record: Dict[str, str]) -> GeoProvince:
        return GeoProvince(
            code=canonicalize_code(record["code"]),
            name=record["name"].strip(),
            region_code=canonicalize_code(record["region_code"]),
        )

    @staticmethod
    def _city_row(record: Dict[str, str]) -> GeoCityMunicipality:
        return GeoCityMunicipality(
            code=canonicalize_code(record["code"]),
            name=record["name"].strip(),
            province_code=_optional_code(record.get("province_code")),
            region_code=_optional_code(record.get("region_code")),
            type=(record.get("type") or "municipality").strip() or "municipality",
            is_independent=str(record.get("is_independent", "")).strip().lower() in TRUE_VALUES,
        )

    @staticmethod
    def _barangay_row(record: Dict[str, str]) -> GeoBarangay:
        return GeoBarangay(
            code=canonicalize_code(record["code"]),
            name=record["name"].strip(),
            city_municipality_code=canonicalize_code(record["city_municipality_code"]),
        )
