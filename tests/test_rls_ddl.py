"""Row-level security rendering tests"""

from rbi_access.models.records import Household, Resident
from rbi_access.services.policy import AccessLevel, SCOPE_COLUMNS
from rbi_access.services.rls import (
    ACCESS_LEVEL_SETTING,
    ASSIGNED_CODE_SETTING,
    NO_ACCESS,
    render_drop_statements,
    render_rls_ddl,
    render_rls_statements,
    render_scope_function,
    render_table_policies,
    session_settings,
)


def test_session_settings_for_scoped_principal(make_principal):
    settings = session_settings(make_principal("city_admin", "0421140"))
    assert settings == {ACCESS_LEVEL_SETTING: "city", ASSIGNED_CODE_SETTING: "0421140"}


def test_session_settings_for_unrestricted_principal(make_principal):
    settings = session_settings(make_principal("national_admin"))
    assert settings == {ACCESS_LEVEL_SETTING: "national", ASSIGNED_CODE_SETTING: ""}


def test_session_settings_for_unresolved_principal(make_principal):
    assert session_settings(make_principal("unknown_role", "042114014"))[ACCESS_LEVEL_SETTING] == NO_ACCESS
    assert session_settings(None)[ACCESS_LEVEL_SETTING] == NO_ACCESS


def test_scope_function_has_one_branch_per_level():
    sql = render_scope_function()
    for level in AccessLevel:
        assert f"WHEN '{level.value}'" in sql
    assert "WHEN 'national' THEN true" in sql
    assert "WHEN 'super' THEN true" in sql
    assert "p_barangay_code = current_setting('rbi.assigned_code', true)" in sql
    assert "ELSE false" in sql


def test_scope_function_compares_the_policy_columns():
    sql = render_scope_function()
    for level, column in SCOPE_COLUMNS.items():
        assert f"WHEN '{level.value}' THEN coalesce(p_{column} =" in sql


def test_table_policies_use_database_column_names():
    statements = render_table_policies(Resident)
    joined = "\n".join(statements)
    assert "ALTER TABLE residents FORCE ROW LEVEL SECURITY;" in statements
    assert "rbi_scope_allows(barangay_code, city_municipality_code, province_code, region_code)" in joined
    assert "FOR SELECT USING" in joined
    assert "FOR INSERT WITH CHECK" in joined
    assert "FOR UPDATE USING" in joined


def test_no_delete_policy():
    for model in (Household, Resident):
        assert not any("FOR DELETE" in s for s in render_table_policies(model))


def test_full_ddl_order():
    statements = render_rls_statements()
    assert statements[0].startswith("CREATE OR REPLACE FUNCTION rbi_scope_allows(")
    assert any("ON households" in s for s in statements)
    assert any("ON residents" in s for s in statements)
    assert render_rls_ddl().startswith(statements[0])


def test_drop_statements_reverse_install():
    statements = render_drop_statements()
    assert statements[-1] == "DROP FUNCTION IF EXISTS rbi_scope_allows(text, text, text, text);"
    assert "ALTER TABLE households DISABLE ROW LEVEL SECURITY;" in statements
