"""Geography reference store tests"""

import pytest

from rbi_access.errors import CodeIntegrityError, InvalidGeographicCodeError
from rbi_access.services.geography import (
    GeoLevel,
    GeoNode,
    GeographyReferenceStore,
    IssueSeverity,
    canonicalize_code,
    get_geography_store,
)


class TestCanonicalize:
    """Code canonicalization at ingestion"""

    def test_keeps_leading_zeros(self):
        assert canonicalize_code("042114014") == "042114014"
        assert canonicalize_code("  04 ") == "04"

    @pytest.mark.parametrize("raw", [42114014, 4.0, True])
    def test_rejects_numbers(self, raw):
        with pytest.raises(InvalidGeographicCodeError):
            canonicalize_code(raw)

    @pytest.mark.parametrize("raw", [None, "", "   ", "04-21", "0421A", "٠٤"])
    def test_rejects_non_digit_text(self, raw):
        with pytest.raises(InvalidGeographicCodeError):
            canonicalize_code(raw)


class TestLookups:
    """Level and chain lookups"""

    def test_level_of(self, reference_store):
        assert reference_store.level_of("04") == GeoLevel.REGION
        assert reference_store.level_of("0421") == GeoLevel.PROVINCE
        assert reference_store.level_of("0421140") == GeoLevel.CITY
        assert reference_store.level_of("042114014") == GeoLevel.BARANGAY
        assert reference_store.level_of("42114014") is None

    def test_codes_at(self, reference_store):
        assert reference_store.codes_at(GeoLevel.REGION) == ["04", "13"]
        assert "133900001" in reference_store.codes_at(GeoLevel.BARANGAY)
        assert len(reference_store) == 13

    def test_component_barangay_chain(self, reference_store):
        chain = reference_store.resolve_barangay_chain("042114014")
        assert chain.as_dict() == {
            "barangay_code": "042114014",
            "city_code": "0421140",
            "province_code": "0421",
            "region_code": "04",
        }

    def test_independent_city_skips_province(self, reference_store):
        chain = reference_store.resolve_barangay_chain("133900001")
        assert chain.city_code == "1339000"
        assert chain.province_code is None
        assert chain.region_code == "13"

    def test_city_chain_has_no_barangay(self, reference_store):
        resolution = reference_store.walk_chain("0434010")
        assert resolution.is_valid
        assert resolution.level == GeoLevel.CITY
        assert resolution.chain.barangay_code is None
        assert resolution.chain.province_code == "0434"

    def test_unknown_code_is_integrity_error(self, reference_store):
        with pytest.raises(CodeIntegrityError) as exc_info:
            reference_store.resolve_chain("999999999")
        assert exc_info.value.geographic_code == "999999999"

    def test_barangay_resolution_rejects_other_levels(self, reference_store):
        with pytest.raises(CodeIntegrityError):
            reference_store.resolve_barangay_chain("0421140")


class TestChainGaps:
    """Broken reference data is reported, never silently accepted"""

    def test_missing_parent(self):
        store = GeographyReferenceStore([
            GeoNode("04", GeoLevel.REGION, "CALABARZON"),
            GeoNode("042114014", GeoLevel.BARANGAY, "Orphan", parent_code="0421140"),
        ])
        resolution = store.walk_chain("042114014")
        assert not resolution.is_valid
        assert resolution.chain is None
        assert "not found" in resolution.issues[0].message

    def test_component_city_without_province(self):
        store = GeographyReferenceStore([
            GeoNode("04", GeoLevel.REGION, "CALABARZON"),
            GeoNode("0421150", GeoLevel.CITY, "Kawit", region_code="04"),
        ])
        resolution = store.walk_chain("0421150")
        assert not resolution.is_valid
        assert resolution.issues[0].severity == IssueSeverity.ERROR

    def test_independent_city_without_region(self):
        store = GeographyReferenceStore([
            GeoNode("1339000", GeoLevel.CITY, "City of Manila", is_independent=True),
        ])
        assert not store.walk_chain("1339000").is_valid

    def test_region_disagreement(self):
        store = GeographyReferenceStore([
            GeoNode("04", GeoLevel.REGION, "CALABARZON"),
            GeoNode("13", GeoLevel.REGION, "NCR"),
            GeoNode("0421", GeoLevel.PROVINCE, "Cavite", parent_code="04"),
            GeoNode("0421140", GeoLevel.CITY, "City of Imus", parent_code="0421", region_code="13"),
        ])
        resolution = store.walk_chain("0421140")
        assert not resolution.is_valid
        assert "disagrees" in resolution.issues[0].message

    def test_wrong_parent_level(self):
        store = GeographyReferenceStore([
            GeoNode("04", GeoLevel.REGION, "CALABARZON"),
            GeoNode("042114014", GeoLevel.BARANGAY, "Bucandala I", parent_code="04"),
        ])
        resolution = store.walk_chain("042114014")
        assert not resolution.is_valid
        assert "not a valid parent" in resolution.issues[0].message

    def test_independent_city_with_province_warns(self):
        store = GeographyReferenceStore([
            GeoNode("04", GeoLevel.REGION, "CALABARZON"),
            GeoNode("0421", GeoLevel.PROVINCE, "Cavite", parent_code="04"),
            GeoNode("0421140", GeoLevel.CITY, "City of Imus", parent_code="0421", is_independent=True),
        ])
        resolution = store.walk_chain("0421140")
        assert resolution.is_valid
        assert resolution.issues[0].severity == IssueSeverity.WARN

    def test_duplicate_code_across_levels(self):
        with pytest.raises(CodeIntegrityError):
            GeographyReferenceStore([
                GeoNode("04", GeoLevel.REGION, "CALABARZON"),
                GeoNode("04", GeoLevel.PROVINCE, "Duplicate", parent_code="04"),
            ])


def test_store_loads_from_reference_tables(geography):
    """The process-wide store reads the seeded reference tables"""
    store = get_geography_store()
    assert store is geography
    assert store.resolve_barangay_chain("133900001").province_code is None
    assert store.get("0421140").name == "City of Imus"


def test_store_refresh_reloads(geography):
    store = get_geography_store(refresh=True)
    assert store is not geography
    assert len(store) == len(geography)
