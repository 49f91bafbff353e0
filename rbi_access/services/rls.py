"""
PostgreSQL row-level security rendering.

The storage-native policy is generated from the same level -> column
mapping the policy model uses, so the database and the application
compare the same attribute for every level. Principals reach the policy
through two transaction-local settings.
"""

from typing import Dict, Iterable, List

from sqlalchemy import inspect

from rbi_access.models.records import SCOPED_MODELS
from rbi_access.services.policy import (
    AnyPrincipal,
    Principal,
    SCOPE_COLUMNS,
    UNRESTRICTED_LEVELS,
)

ACCESS_LEVEL_SETTING = "rbi.access_level"
ASSIGNED_CODE_SETTING = "rbi.assigned_code"
SCOPE_FUNCTION = "rbi_scope_allows"

# Value stored for unresolved principals; matches no CASE branch
NO_ACCESS = "none"

# Function arguments, in SCOPE_COLUMNS order
_ARGUMENTS = [(level, f"p_{column}") for level, column in SCOPE_COLUMNS.items()]


def session_settings(principal: AnyPrincipal) -> Dict[str, str]:
    """Transaction-local settings describing a principal"""
    if not isinstance(principal, Principal):
        return {ACCESS_LEVEL_SETTING: NO_ACCESS, ASSIGNED_CODE_SETTING: ""}
    return {
        ACCESS_LEVEL_SETTING: principal.access_level.value,
        ASSIGNED_CODE_SETTING: principal.assigned_code or "",
    }


def render_scope_function() -> str:
    """CREATE FUNCTION for the shared scope predicate"""
    params = ",\n    ".join(f"{name} text" for _, name in _ARGUMENTS)
    branches: List[str] = []
    for level in UNRESTRICTED_LEVELS:
        branches.append(f"        WHEN '{level.value}' THEN true")
    for level, name in _ARGUMENTS:
        branches.append(
            f"        WHEN '{level.value}' THEN coalesce("
            f"{name} = current_setting('{ASSIGNED_CODE_SETTING}', true), false)"
        )
    body = "\n".join(branches)
    return (
        f"CREATE OR REPLACE FUNCTION {SCOPE_FUNCTION}(\n    {params}\n) RETURNS boolean\n"
        f"LANGUAGE sql STABLE\nAS $$\n"
        f"    SELECT CASE current_setting('{ACCESS_LEVEL_SETTING}', true)\n"
        f"{body}\n"
        f"        ELSE false\n"
        f"    END\n$$;"
    )


def _db_column(model, attribute: str) -> str:
    return inspect(model).attrs[attribute].columns[0].name


def _scope_call(model) -> str:
    args = ", ".join(_db_column(model, SCOPE_COLUMNS[level]) for level, _ in _ARGUMENTS)
    return f"{SCOPE_FUNCTION}({args})"


def render_table_policies(model) -> List[str]:
    """RLS statements for one attributed table; no DELETE policy, so deletes are refused"""
    table = model.__tablename__
    check = _scope_call(model)
    return [
        f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;",
        f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY;",
        f"DROP POLICY IF EXISTS rbi_{table}_select ON {table};",
        f"CREATE POLICY rbi_{table}_select ON {table} FOR SELECT USING ({check});",
        f"DROP POLICY IF EXISTS rbi_{table}_insert ON {table};",
        f"CREATE POLICY rbi_{table}_insert ON {table} FOR INSERT WITH CHECK ({check});",
        f"DROP POLICY IF EXISTS rbi_{table}_update ON {table};",
        f"CREATE POLICY rbi_{table}_update ON {table} FOR UPDATE USING ({check}) WITH CHECK ({check});",
    ]


def render_rls_statements(models: Iterable = SCOPED_MODELS) -> List[str]:
    """All statements installing row-level security, in execution order"""
    statements = [render_scope_function()]
    for model in models:
        statements.extend(render_table_policies(model))
    return statements


def render_rls_ddl(models: Iterable = SCOPED_MODELS) -> str:
    return "\n\n".join(render_rls_statements(models)) + "\n"


def render_drop_statements(models: Iterable = SCOPED_MODELS) -> List[str]:
    """Reverse of render_rls_statements"""
    statements: List[str] = []
    for model in models:
        table = model.__tablename__
        for action in ("select", "insert", "update"):
            statements.append(f"DROP POLICY IF EXISTS rbi_{table}_{action} ON {table};")
        statements.append(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY;")
        statements.append(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY;")
    params = ", ".join("text" for _ in _ARGUMENTS)
    statements.append(f"DROP FUNCTION IF EXISTS {SCOPE_FUNCTION}({params});")
    return statements


__all__ = [
    "ACCESS_LEVEL_SETTING",
    "ASSIGNED_CODE_SETTING",
    "SCOPE_FUNCTION",
    "NO_ACCESS",
    "session_settings",
    "render_scope_function",
    "render_table_policies",
    "render_rls_statements",
    "render_rls_ddl",
    "render_drop_statements",
]
