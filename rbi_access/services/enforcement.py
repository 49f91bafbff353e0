"""
Dual Enforcement Adapter.

Declarative path: principal-bound sessions get loader criteria for every
attributed model on every ORM SELECT, and a flush-time write check on the
pre- and post-image of every changed record. On PostgreSQL the principal is
also handed to the row-level security policies rendered by
rbi_access.services.rls.

Privileged path: sessions on the elevated engine skip the automatic
criteria, so every SELECT/UPDATE/DELETE touching an attributed table must
carry a ScopeFilter. A ScopeFilter can only come from
build_filter_predicate(), which delegates to the policy model.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

import structlog
from sqlalchemy import event, false, func, select, text, true, update
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria
from sqlalchemy.orm.attributes import get_history
from sqlalchemy.sql.util import find_tables

from rbi_access.config import settings
from rbi_access.database import (
    PRINCIPAL_MODE,
    PRIVILEGED_MODE,
    SESSION_MODE_KEY,
    PrivilegedSessionLocal,
    SessionLocal,
)
from rbi_access.errors import (
    AccessDeniedError,
    CodeIntegrityError,
    HouseholdNotFoundError,
    InvalidChangeError,
    UnscopedPrivilegedQueryError,
)
from rbi_access.models.records import Household, Resident, SCOPED_MODELS
from rbi_access.observability.metrics import UNSCOPED_QUERIES
from rbi_access.services.audit import record_audit
from rbi_access.services.geography import get_geography_store
from rbi_access.services.policy import (
    AnyPrincipal,
    Attribution,
    Scope,
    ScopeKind,
    decide,
    scope_for,
)
from rbi_access.services.rls import ACCESS_LEVEL_SETTING, ASSIGNED_CODE_SETTING, session_settings

logger = structlog.get_logger()

PRINCIPAL_KEY = "rbi_principal"
SCOPE_OPTION = "rbi_scope_filter"

SCOPED_TABLES = frozenset(model.__tablename__ for model in SCOPED_MODELS)
GEO_COLUMNS = ("barangay_code", "city_code", "province_code", "region_code")

_FILTER_TOKEN = object()


def scope_clause(scope: Scope, entity):
    """SQL rendering of a Scope against one attributed model"""
    if scope.kind == ScopeKind.ALL:
        return true()
    if scope.kind == ScopeKind.NONE:
        return false()
    return getattr(entity, scope.column) == scope.code


class ScopeFilter:
    """Filter predicate for privileged statements, built only by build_filter_predicate()"""

    __slots__ = ("_principal", "_scope")

    def __init__(self, principal: AnyPrincipal, scope: Scope, _token: object = None):
        if _token is not _FILTER_TOKEN:
            raise TypeError("ScopeFilter instances are built by build_filter_predicate(principal)")
        self._principal = principal
        self._scope = scope

    @property
    def principal(self) -> AnyPrincipal:
        return self._principal

    @property
    def scope(self) -> Scope:
        return self._scope

    def clause_for(self, entity):
        return scope_clause(self._scope, entity)

    def allows(self, attribution: Attribution) -> bool:
        return self._scope.matches(attribution)

    def execution_options(self) -> Dict[str, Any]:
        return {SCOPE_OPTION: self}

    def apply(self, statement, *entities):
        """Add the predicate for each entity and attach the filter to the statement"""
        for entity in entities:
            statement = statement.where(self.clause_for(entity))
        return statement.execution_options(**self.execution_options())

    def __repr__(self):
        return f"<ScopeFilter(principal='{getattr(self._principal, 'identity', None)}', scope={self._scope.kind.value})>"


def build_filter_predicate(principal: AnyPrincipal) -> ScopeFilter:
    """The single constructor for privileged-path filters; unresolved principals get deny-all"""
    return ScopeFilter(principal, scope_for(principal), _token=_FILTER_TOKEN)


def session_principal(session: Session) -> Optional[AnyPrincipal]:
    return session.info.get(PRINCIPAL_KEY)


def _session_mode(session: Session) -> str:
    return session.info.get(SESSION_MODE_KEY, PRINCIPAL_MODE)


def _touches_scoped_tables(state: ORMExecuteState) -> bool:
    for mapper in state.all_mappers:
        if mapper.class_ in SCOPED_MODELS:
            return True
    for table in find_tables(state.statement, include_aliases=True, include_crud=True):
        if getattr(table, "name", None) in SCOPED_TABLES:
            return True
    return False


def _statement_kind(state: ORMExecuteState) -> str:
    if state.is_update:
        return "update"
    if state.is_delete:
        return "delete"
    return "select"


def _criteria_options(scope: Scope) -> List:
    return [with_loader_criteria(model, scope_clause(scope, model)) for model in SCOPED_MODELS]


def _on_orm_execute(state: ORMExecuteState) -> None:
    if not (state.is_select or state.is_update or state.is_delete):
        return
    if state.is_select and (state.is_column_load or state.is_relationship_load):
        return

    session = state.session
    mode = _session_mode(session)
    scope_filter = state.execution_options.get(SCOPE_OPTION)
    if scope_filter is not None and not isinstance(scope_filter, ScopeFilter):
        raise UnscopedPrivilegedQueryError(
            f"{SCOPE_OPTION} must be a ScopeFilter from build_filter_predicate(), got {type(scope_filter).__name__}"
        )

    needs_filter = mode == PRIVILEGED_MODE or state.is_update or state.is_delete
    if needs_filter:
        if not _touches_scoped_tables(state):
            return
        if scope_filter is None:
            kind = _statement_kind(state)
            UNSCOPED_QUERIES.labels(statement=kind).inc()
            logger.error("Rejected unscoped statement on attributed table", statement=kind, session_mode=mode)
            raise UnscopedPrivilegedQueryError(
                f"{kind.upper()} on an attributed table requires a ScopeFilter; "
                f"use build_filter_predicate(principal).apply(...)"
            )
        if state.is_select:
            state.statement = state.statement.options(*_criteria_options(scope_filter.scope))
        return

    # Declarative path: criteria from the bound principal, deny-all without one
    state.statement = state.statement.options(*_criteria_options(scope_for(session_principal(session))))


def _pre_image(obj) -> Attribution:
    values = {}
    for attribute in GEO_COLUMNS:
        history = get_history(obj, attribute)
        if history.deleted:
            values[attribute] = history.deleted[0]
        else:
            values[attribute] = getattr(obj, attribute)
    return Attribution(**values)


def _changed(obj, attributes) -> List[str]:
    return [attribute for attribute in attributes if get_history(obj, attribute).has_changes()]


def _check_chain(obj) -> None:
    """The stamped codes must be exactly the reference chain of the barangay"""
    codes = Attribution.of(obj).codes()
    chain = get_geography_store().resolve_barangay_chain(obj.barangay_code).as_dict()
    if codes != chain:
        mismatched = sorted(column for column in GEO_COLUMNS if codes[column] != chain[column])
        raise CodeIntegrityError(
            obj.barangay_code,
            f"{type(obj).__name__} codes disagree with the reference chain on {', '.join(mismatched)}",
        )


def _target_household(session: Session, code: str) -> Household:
    for obj in session.new:
        if isinstance(obj, Household) and obj.code == code:
            return obj
    with session.no_autoflush:
        household = session.get(Household, code)
    if household is None or not household.is_active:
        raise HouseholdNotFoundError(code)
    return household


def _check_attribution(session: Session, new: List, dirty: List) -> None:
    """Keep household codes on their reference chain and residents on their household's codes"""
    for obj in dirty:
        if isinstance(obj, Household) and _changed(obj, GEO_COLUMNS):
            raise InvalidChangeError(
                f"Household {obj.code!r} geographic codes change only through on_household_relocate",
                household_code=obj.code, fields=_changed(obj, GEO_COLUMNS),
            )
        if isinstance(obj, Resident) and _changed(obj, GEO_COLUMNS + ("household_code",)):
            raise InvalidChangeError(
                f"Resident {obj.id!r} codes change only through on_resident_reassign_household "
                f"or repair_attribution",
                resident_id=obj.id, fields=_changed(obj, GEO_COLUMNS + ("household_code",)),
            )

    for obj in new:
        if isinstance(obj, Household):
            _check_chain(obj)
        elif isinstance(obj, Resident) and not obj.household_code:
            _check_chain(obj)

    for obj in new:
        if not isinstance(obj, Resident) or not obj.household_code:
            continue
        household = _target_household(session, obj.household_code)
        if Attribution.of(obj).codes() != Attribution.of(household).codes():
            raise CodeIntegrityError(
                obj.barangay_code or "",
                f"resident codes differ from household {household.code!r}",
            )
        if obj.is_active is not False:
            household.member_count = (household.member_count or 0) + 1


def _on_before_flush(session: Session, flush_context, instances) -> None:
    if _session_mode(session) == PRIVILEGED_MODE:
        return

    principal = session_principal(session)
    identity = getattr(principal, "identity", None)

    for obj in session.deleted:
        if isinstance(obj, SCOPED_MODELS):
            raise AccessDeniedError(
                f"{type(obj).__name__} rows are never deleted; deactivate them instead",
                principal=identity,
            )

    new = [obj for obj in session.new if isinstance(obj, SCOPED_MODELS)]
    dirty = [obj for obj in session.dirty if isinstance(obj, SCOPED_MODELS) and session.is_modified(obj)]

    for obj in new:
        if not decide(principal, Attribution.of(obj)).can_write:
            raise AccessDeniedError(
                f"Principal may not create {type(obj).__name__} in this scope",
                principal=identity, attribution=Attribution.of(obj).codes(),
            )

    for obj in dirty:
        before = _pre_image(obj)
        after = Attribution.of(obj)
        if not (decide(principal, before).can_write and decide(principal, after).can_write):
            raise AccessDeniedError(
                f"Principal may not modify {type(obj).__name__} in this scope",
                principal=identity, before=before.codes(), after=after.codes(),
            )

    _check_attribution(session, new, dirty)


def _on_after_begin(session: Session, transaction, connection) -> None:
    """Hand the principal to the storage-native policies for this transaction"""
    if _session_mode(session) == PRIVILEGED_MODE:
        return
    if not settings.rls_enabled or connection.dialect.name != "postgresql":
        return

    values = session_settings(session_principal(session))
    connection.execute(
        text("SELECT set_config(:level_key, :level, true), set_config(:code_key, :code, true)"),
        {
            "level_key": ACCESS_LEVEL_SETTING,
            "level": values[ACCESS_LEVEL_SETTING],
            "code_key": ASSIGNED_CODE_SETTING,
            "code": values[ASSIGNED_CODE_SETTING],
        },
    )


def install_declarative_scope(target=Session) -> None:
    """Register the enforcement hooks on a Session class or sessionmaker"""
    hooks = (
        ("do_orm_execute", _on_orm_execute),
        ("before_flush", _on_before_flush),
        ("after_begin", _on_after_begin),
    )
    for name, fn in hooks:
        if not event.contains(target, name, fn):
            event.listen(target, name, fn)


install_declarative_scope()


def principal_session(principal: AnyPrincipal, session_factory=None) -> Session:
    """Open a declarative-path session bound to one principal"""
    session = (session_factory or SessionLocal)()
    session.info[SESSION_MODE_KEY] = PRINCIPAL_MODE
    session.info[PRINCIPAL_KEY] = principal
    return session


def privileged_session(session_factory=None) -> Session:
    """Open a privileged-path session; its statements must carry a ScopeFilter"""
    session = (session_factory or PrivilegedSessionLocal)()
    session.info[SESSION_MODE_KEY] = PRIVILEGED_MODE
    session.info.pop(PRINCIPAL_KEY, None)
    return session


@contextmanager
def snapshot_session(session_factory=None) -> Iterator[Session]:
    """Read-only privileged session in one consistent snapshot, always rolled back"""
    session = privileged_session(session_factory)
    try:
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            options = {"isolation_level": "REPEATABLE READ", "postgresql_readonly": True}
        elif dialect == "sqlite":
            options = {"isolation_level": "SERIALIZABLE"}
        else:
            options = {}
        session.connection(execution_options=options)
        yield session
    finally:
        session.rollback()
        session.close()


def resident_report_rows(
    session: Session,
    scope_filter: ScopeFilter,
    barangay_code: Optional[str] = None,
    include_inactive: bool = False,
) -> List[Dict[str, Any]]:
    """Flattened resident + household rows for reporting"""
    stmt = (
        select(
            Resident.id,
            Resident.first_name,
            Resident.middle_name,
            Resident.last_name,
            Resident.sex,
            Resident.birthdate,
            Resident.household_code,
            Household.name.label("household_name"),
            Household.house_number,
            Household.street_name,
            Household.subdivision,
            Resident.barangay_code,
            Resident.city_code,
            Resident.province_code,
            Resident.region_code,
        )
        .outerjoin(Household, Resident.household_code == Household.code)
        .order_by(Resident.last_name, Resident.first_name, Resident.id)
    )
    if not include_inactive:
        stmt = stmt.where(Resident.is_active.is_(True))
    if barangay_code is not None:
        stmt = stmt.where(Resident.barangay_code == barangay_code)
    stmt = scope_filter.apply(stmt, Resident)

    return [dict(row._mapping) for row in session.execute(stmt)]


def household_summary(session: Session, scope_filter: ScopeFilter) -> List[Dict[str, Any]]:
    """Active household and member counts per barangay"""
    stmt = (
        select(
            Household.barangay_code,
            Household.city_code,
            func.count(Household.code).label("household_count"),
            func.coalesce(func.sum(Household.member_count), 0).label("member_count"),
        )
        .where(Household.is_active.is_(True))
        .group_by(Household.barangay_code, Household.city_code)
        .order_by(Household.barangay_code)
    )
    stmt = scope_filter.apply(stmt, Household)

    return [
        {
            "barangay_code": row.barangay_code,
            "city_code": row.city_code,
            "household_count": int(row.household_count),
            "member_count": int(row.member_count),
        }
        for row in session.execute(stmt)
    ]


def refresh_member_counts(session: Session, scope_filter: ScopeFilter, household_codes: Iterable[str]) -> Dict[str, int]:
    """Recompute member_count from active residents for the given households"""
    codes = sorted({code for code in household_codes if code})
    if not codes:
        return {}

    session.flush()
    counted = select(Resident.household_code, func.count(Resident.id)).where(
        Resident.household_code.in_(codes),
        Resident.is_active.is_(True),
    ).group_by(Resident.household_code)
    counts = {code: 0 for code in codes}
    counts.update({code: int(n) for code, n in session.execute(scope_filter.apply(counted, Resident))})

    for code, count in counts.items():
        stmt = update(Household).where(Household.code == code).values(member_count=count)
        session.execute(
            scope_filter.apply(stmt, Household).execution_options(synchronize_session=False)
        )

    for obj in list(session.identity_map.values()):
        if isinstance(obj, Household) and obj.code in counts:
            session.expire(obj, ["member_count"])
    return counts


def bulk_deactivate_residents(
    session: Session,
    scope_filter: ScopeFilter,
    resident_ids: Sequence[str],
    user_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> List[str]:
    """
    Soft-delete many residents in one statement.

    Only residents visible through the filter are touched. Returns the ids
    actually deactivated; the caller owns the transaction.
    """
    if not resident_ids:
        return []

    found = select(Resident.id, Resident.household_code).where(
        Resident.id.in_(list(resident_ids)),
        Resident.is_active.is_(True),
    )
    rows = session.execute(scope_filter.apply(found, Resident)).all()
    ids = [row.id for row in rows]
    if not ids:
        return []

    stmt = update(Resident).where(Resident.id.in_(ids)).values(
        is_active=False,
        updated_by=user_id,
        updated_at=datetime.utcnow(),
    )
    session.execute(scope_filter.apply(stmt, Resident).execution_options(synchronize_session=False))

    for obj in list(session.identity_map.values()):
        if isinstance(obj, Resident) and obj.id in ids:
            session.expire(obj)

    for resident_id in ids:
        record_audit(
            session, "residents", resident_id, "DEACTIVATE",
            user_id=user_id, old_values={"is_active": True}, new_values={"is_active": False},
            reason=reason,
        )
    refresh_member_counts(session, scope_filter, [row.household_code for row in rows])

    logger.info("Bulk deactivated residents", count=len(ids), user_id=user_id)
    return ids


__all__ = [
    "PRINCIPAL_KEY",
    "SCOPE_OPTION",
    "ScopeFilter",
    "build_filter_predicate",
    "scope_clause",
    "install_declarative_scope",
    "principal_session",
    "privileged_session",
    "snapshot_session",
    "session_principal",
    "resident_report_rows",
    "household_summary",
    "refresh_member_counts",
    "bulk_deactivate_residents",
]
