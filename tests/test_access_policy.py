"""Access policy model tests"""

import pytest

from rbi_access.services.policy import (
    AccessLevel,
    Attribution,
    Decision,
    Principal,
    ROLE_ACCESS_LEVELS,
    SCOPE_COLUMNS,
    ScopeKind,
    UnresolvedPrincipal,
    decide,
    decide_relocation,
    scope_for,
)

IMUS_14 = Attribution(barangay_code="042114014", city_code="0421140", province_code="0421", region_code="04")
IMUS_99 = Attribution(barangay_code="042114099", city_code="0421140", province_code="0421", region_code="04")
KAWIT_01 = Attribution(barangay_code="042115001", city_code="0421150", province_code="0421", region_code="04")
CALAMBA_01 = Attribution(barangay_code="043401001", city_code="0434010", province_code="0434", region_code="04")
MANILA_01 = Attribution(barangay_code="133900001", city_code="1339000", province_code=None, region_code="13")

ALL_RECORDS = [IMUS_14, IMUS_99, KAWIT_01, CALAMBA_01, MANILA_01]


class TestScenarios:
    """Concrete decisions for barangay, city and unmapped principals"""

    def test_barangay_admin_allowed_in_own_barangay(self, make_principal):
        """A barangay admin may read and write records in its barangay."""
        principal = make_principal("barangay_admin", "042114014")
        decision = decide(principal, IMUS_14)
        assert decision == Decision.ALLOW_WRITE
        assert decision.can_read and decision.can_write

    def test_barangay_admin_denied_in_sibling_barangay(self, make_principal):
        """A barangay admin may not see a sibling barangay in the same city."""
        principal = make_principal("barangay_admin", "042114014")
        assert decide(principal, IMUS_99) == Decision.DENY

    def test_city_admin_reads_both_barangays(self, make_principal):
        """A city admin sees every barangay sharing its city code."""
        principal = make_principal("city_admin", "0421140")
        assert decide(principal, IMUS_14).can_read
        assert decide(principal, IMUS_99).can_read
        assert decide(principal, KAWIT_01) == Decision.DENY

    def test_unknown_role_denied_everywhere(self, make_principal):
        """A role without a level mapping is denied regardless of attribution."""
        principal = make_principal("unknown_role", "042114014")
        assert isinstance(principal, UnresolvedPrincipal)
        for attribution in ALL_RECORDS:
            assert decide(principal, attribution) == Decision.DENY


class TestLevels:
    """Level semantics"""

    def test_national_allows_everything(self, make_principal):
        principal = make_principal("national_admin")
        assert all(decide(principal, a) == Decision.ALLOW_WRITE for a in ALL_RECORDS)

    def test_super_allows_everything(self, make_principal):
        principal = make_principal("super_admin")
        assert principal.access_level == AccessLevel.SUPER
        assert all(decide(principal, a) == Decision.ALLOW_WRITE for a in ALL_RECORDS)

    def test_province_and_region_compare_their_own_column(self, make_principal):
        province = make_principal("province_admin", "0421")
        region = make_principal("region_admin", "13")
        assert decide(province, KAWIT_01).can_read
        assert decide(province, CALAMBA_01) == Decision.DENY
        assert decide(region, MANILA_01).can_read
        assert decide(region, IMUS_14) == Decision.DENY

    def test_independent_city_has_no_province_match(self, make_principal):
        """A record without a province code never matches a province scope."""
        province = make_principal("province_admin", "0421")
        assert decide(province, MANILA_01) == Decision.DENY

    def test_read_only_attribution_downgrades_to_read(self, make_principal):
        principal = make_principal("barangay_admin", "042114014")
        reference = Attribution(
            barangay_code="042114014", city_code="0421140", province_code="0421", region_code="04", mutable=False
        )
        assert decide(principal, reference) == Decision.ALLOW_READ

    def test_comparison_is_exact(self, make_principal):
        """Codes are compared as stored; a stripped leading zero does not match."""
        principal = make_principal("barangay_admin", "042114014")
        stripped = Attribution(barangay_code="42114014", city_code="421140", province_code="421", region_code="4")
        assert decide(principal, stripped) == Decision.DENY

    def test_role_table(self):
        assert ROLE_ACCESS_LEVELS["barangay_staff"] == AccessLevel.BARANGAY
        assert "resident" not in ROLE_ACCESS_LEVELS
        assert set(SCOPE_COLUMNS) == {
            AccessLevel.BARANGAY, AccessLevel.CITY, AccessLevel.PROVINCE, AccessLevel.REGION
        }


class TestDefaultDeny:
    """Unresolved principals and evaluation failures"""

    @pytest.mark.parametrize("role,code", [
        ("resident", "042114014"),
        ("", "042114014"),
        (None, None),
        ("barangay_admin", None),
        ("barangay_admin", "0421140"),
        ("city_admin", "042114014"),
        ("barangay_admin", "999999999"),
        ("national_admin", "04"),
    ])
    def test_malformed_claims_resolve_to_unresolved(self, make_principal, role, code):
        principal = make_principal(role, code)
        assert isinstance(principal, UnresolvedPrincipal)
        assert principal.reason
        for attribution in ALL_RECORDS:
            assert decide(principal, attribution) == Decision.DENY
        assert scope_for(principal).kind == ScopeKind.NONE

    def test_missing_principal_denied(self):
        assert decide(None, IMUS_14) == Decision.DENY

    def test_evaluation_error_denies(self, make_principal):
        """A failure while reading the attribution resolves to DENY."""

        class Broken:
            mutable = True

            @property
            def barangay_code(self):
                raise RuntimeError("attribute unavailable")

        principal = make_principal("barangay_admin", "042114014")
        assert decide(principal, Broken()) == Decision.DENY

    def test_principal_requires_level_enum(self):
        with pytest.raises(TypeError):
            Principal(identity="x", role="city_admin", access_level="city", assigned_code="0421140")

    def test_scoped_principal_requires_code(self):
        with pytest.raises(ValueError):
            Principal(identity="x", role="city_admin", access_level=AccessLevel.CITY)

    def test_unrestricted_principal_rejects_code(self):
        with pytest.raises(ValueError):
            Principal(identity="x", role="national_admin", access_level=AccessLevel.NATIONAL, assigned_code="04")


def test_monotonic_scope_containment(make_principal):
    """Widening a principal to the parent code at a coarser level never loses access."""
    ladder = [
        ("barangay_admin", "barangay_code"),
        ("city_admin", "city_code"),
        ("province_admin", "province_code"),
        ("region_admin", "region_code"),
    ]
    for attribution in ALL_RECORDS:
        for narrow in range(len(ladder)):
            role, field = ladder[narrow]
            code = getattr(attribution, field)
            if code is None:
                continue
            if not decide(make_principal(role, code), attribution).can_read:
                continue
            for wide in range(narrow + 1, len(ladder)):
                wide_role, wide_field = ladder[wide]
                wide_code = getattr(attribution, wide_field)
                if wide_code is None:
                    continue
                assert decide(make_principal(wide_role, wide_code), attribution).can_read
            assert decide(make_principal("national_admin"), attribution).can_read


class TestRelocationDecision:
    """Relocation needs write on both sides"""

    def test_city_admin_relocates_within_city(self, make_principal):
        principal = make_principal("city_admin", "0421140")
        assert decide_relocation(principal, IMUS_14, IMUS_99) == Decision.ALLOW_WRITE

    def test_barangay_admin_cannot_relocate_out(self, make_principal):
        principal = make_principal("barangay_admin", "042114014")
        assert decide_relocation(principal, IMUS_14, IMUS_99) == Decision.DENY

    def test_city_admin_cannot_relocate_into_other_city(self, make_principal):
        principal = make_principal("city_admin", "0421140")
        assert decide_relocation(principal, IMUS_14, KAWIT_01) == Decision.DENY
