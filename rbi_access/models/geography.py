"""PSGC reference geography models (region > province > city/municipality > barangay)"""

from sqlalchemy import Column, String, Boolean, ForeignKey, Index

from rbi_access.database import Base


class GeoRegion(Base):
    """PSGC region"""

    __tablename__ = "psgc_regions"

    code = Column(String(10), primary_key=True)
    name = Column(String(200), nullable=False)

    def __repr__(self):
        return f"<GeoRegion(code='{self.code}', name='{self.name}')>"


class GeoProvince(Base):
    """PSGC province"""

    __tablename__ = "psgc_provinces"

    code = Column(String(10), primary_key=True)
    name = Column(String(200), nullable=False)
    region_code = Column(String(10), ForeignKey("psgc_regions.code"), nullable=False)

    __table_args__ = (
        Index("idx_psgc_provinces_region", "region_code"),
    )

    def __repr__(self):
        return f"<GeoProvince(code='{self.code}', region_code='{self.region_code}')>"


class GeoCityMunicipality(Base):
    """PSGC city or municipality; independent cities have no province"""

    __tablename__ = "psgc_cities_municipalities"

    code = Column(String(10), primary_key=True)
    name = Column(String(200), nullable=False)
    province_code = Column(String(10), ForeignKey("psgc_provinces.code"), nullable=True)
    region_code = Column(String(10), ForeignKey("psgc_regions.code"), nullable=True)
    type = Column(String(50), nullable=False, default="municipality")
    is_independent = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("idx_psgc_cities_province", "province_code"),
        Index("idx_psgc_cities_region", "region_code"),
    )

    def __repr__(self):
        return f"<GeoCityMunicipality(code='{self.code}', province_code='{self.province_code}')>"


class GeoBarangay(Base):
    """PSGC barangay"""

    __tablename__ = "psgc_barangays"

    code = Column(String(10), primary_key=True)
    name = Column(String(200), nullable=False)
    city_municipality_code = Column(String(10), ForeignKey("psgc_cities_municipalities.code"), nullable=False)

    __table_args__ = (
        Index("idx_psgc_barangays_city", "city_municipality_code"),
    )

    def __repr__(self):
        return f"<GeoBarangay(code='{self.code}', city='{self.city_municipality_code}')>"
