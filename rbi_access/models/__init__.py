"""Database models for the RBI access subsystem"""

from .geography import GeoRegion, GeoProvince, GeoCityMunicipality, GeoBarangay
from .records import Household, Resident, SCOPED_MODELS
from .audit import AuditLog

__all__ = [
    "GeoRegion", "GeoProvince", "GeoCityMunicipality", "GeoBarangay",
    "Household", "Resident", "SCOPED_MODELS",
    "AuditLog",
]
