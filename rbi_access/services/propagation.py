"""
Attribution Propagation Engine.

Keeps the four geographic codes on residents equal to their household's.
Every operation authorizes the principal with the policy model up front,
then runs as one unit of work on the privileged path under the engine's
own system filter: resident rows must be rewritten even when a drifted
resident is no longer visible to the principal. Any failure rolls the
whole unit back.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

import structlog
from pydantic import ValidationError
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rbi_access.config import settings
from rbi_access.errors import (
    AccessControlError,
    AccessDeniedError,
    DuplicateHouseholdError,
    ErrorCode,
    HouseholdNotFoundError,
    InvalidChangeError,
    OperationResult,
    PrincipalUnresolvedError,
    ResidentNotFoundError,
)
from rbi_access.models.records import Household, Resident
from rbi_access.observability.metrics import PROPAGATION_FAILURES, PROPAGATION_WRITES
from rbi_access.schemas.common import AttributionCodes
from rbi_access.schemas.records import (
    HouseholdCreate,
    HouseholdRecord,
    HouseholdUpdate,
    RelocationResult,
    RepairResult,
    ResidentCreate,
    ResidentRecord,
)
from rbi_access.services.audit import record_audit
from rbi_access.services.enforcement import (
    build_filter_predicate,
    privileged_session,
    refresh_member_counts,
)
from rbi_access.services.geography import GeoChain, GeographyReferenceStore, get_geography_store
from rbi_access.services.policy import (
    AccessLevel,
    AnyPrincipal,
    Attribution,
    Principal,
    decide,
    decide_relocation,
)

logger = structlog.get_logger()

CODE_FIELDS = ("barangay_code", "city_code", "province_code", "region_code")


def _codes(record) -> Dict[str, Optional[str]]:
    return {field: getattr(record, field) for field in CODE_FIELDS}


def _chunks(items: List[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class AttributionPropagator:
    """Synchronous propagation of household attribution onto residents"""

    def __init__(
        self,
        session_factory=None,
        geography: Optional[GeographyReferenceStore] = None,
        chunk_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self._geography = geography
        self.chunk_size = chunk_size or settings.propagation_chunk_size
        self.system_filter = build_filter_predicate(Principal.system("attribution-propagator"))

    @property
    def geography(self) -> GeographyReferenceStore:
        if self._geography is None:
            self._geography = get_geography_store()
        return self._geography

    @contextmanager
    def _unit_of_work(self) -> Iterator[Session]:
        session = privileged_session(self.session_factory)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _run(self, operation: str, principal: AnyPrincipal, work: Callable[[Session, Principal], Any]) -> OperationResult:
        if not isinstance(principal, Principal):
            reason = getattr(principal, "reason", "principal is missing")
            logger.warning("Propagation refused for unresolved principal", operation=operation, reason=reason)
            PROPAGATION_FAILURES.labels(operation=operation, error_code=ErrorCode.PRINCIPAL_UNRESOLVED.value).inc()
            return OperationResult.from_error(PrincipalUnresolvedError(
                f"Principal unresolved: {reason}", principal=getattr(principal, "identity", None)
            ))

        try:
            with self._unit_of_work() as session:
                value = work(session, principal)
        except AccessControlError as e:
            PROPAGATION_FAILURES.labels(operation=operation, error_code=e.code.value).inc()
            logger.warning(
                "Propagation rejected",
                operation=operation,
                principal=principal.identity,
                error_code=e.code.value,
                message=e.message,
            )
            return OperationResult.from_error(e)

        logger.info("Propagation committed", operation=operation, principal=principal.identity)
        return OperationResult.success(value)

    # Lookups, all under the system filter and locked for the unit of work

    def _lock_household(self, session: Session, household_code: str) -> Household:
        household = session.get(
            Household, household_code,
            with_for_update=True,
            populate_existing=True,
            execution_options=self.system_filter.execution_options(),
        )
        if household is None or not household.is_active:
            raise HouseholdNotFoundError(household_code)
        return household

    def _lock_resident(self, session: Session, resident_id: str) -> Resident:
        resident = session.get(
            Resident, resident_id,
            with_for_update=True,
            populate_existing=True,
            execution_options=self.system_filter.execution_options(),
        )
        if resident is None or not resident.is_active:
            raise ResidentNotFoundError(resident_id)
        return resident

    def _active_member_ids(self, session: Session, household_code: str) -> List[str]:
        stmt = (
            select(Resident.id)
            .where(Resident.household_code == household_code, Resident.is_active.is_(True))
            .order_by(Resident.id)
        )
        return list(session.execute(self.system_filter.apply(stmt, Resident)).scalars())

    def _chain_for(self, principal: Principal, barangay_code: Optional[str]) -> GeoChain:
        """Explicit barangay, or the barangay principal's own scope"""
        if barangay_code is None:
            if principal.access_level != AccessLevel.BARANGAY:
                raise InvalidChangeError(
                    f"{principal.access_level.value} principals must name a barangay code",
                    principal=principal.identity,
                )
            barangay_code = principal.assigned_code
        return self.geography.resolve_barangay_chain(barangay_code)

    @staticmethod
    def _require_write(principal: Principal, attribution: Attribution, action: str) -> None:
        if not decide(principal, attribution).can_write:
            raise AccessDeniedError(
                f"Principal {principal.identity!r} may not {action} in this scope",
                principal=principal.identity,
                attribution=attribution.codes(),
            )

    def _next_household_code(self, session: Session, barangay_code: str) -> str:
        stmt = select(func.count(Household.code)).where(Household.barangay_code == barangay_code)
        sequence = session.execute(self.system_filter.apply(stmt, Household)).scalar_one() + 1
        while True:
            code = f"{barangay_code}-{sequence:04d}"
            taken = session.get(Household, code, execution_options=self.system_filter.execution_options())
            if taken is None:
                return code
            sequence += 1

    def _propagate_chunk(self, session: Session, resident_ids: List[str], codes: Dict[str, Optional[str]], user_id: str) -> int:
        stmt = update(Resident).where(Resident.id.in_(resident_ids)).values(
            updated_by=user_id,
            updated_at=datetime.utcnow(),
            **codes,
        )
        session.execute(
            self.system_filter.apply(stmt, Resident).execution_options(synchronize_session=False)
        )
        return len(resident_ids)

    # Operations

    def create_household(self, principal: AnyPrincipal, data: HouseholdCreate) -> OperationResult[HouseholdRecord]:
        """Create a household stamped with one consistent chain"""

        def work(session: Session, principal: Principal) -> HouseholdRecord:
            chain = self._chain_for(principal, data.barangay_code)
            attribution = Attribution.from_chain(chain)
            self._require_write(principal, attribution, "create households")

            code = data.code or self._next_household_code(session, chain.barangay_code)
            household = Household(
                code=code,
                name=data.name,
                house_number=data.house_number,
                street_name=data.street_name,
                subdivision=data.subdivision,
                member_count=0,
                is_active=True,
                created_by=principal.identity,
                updated_by=principal.identity,
                **attribution.codes(),
            )
            session.add(household)
            try:
                session.flush()
            except IntegrityError as e:
                # Another writer took the code between generation and insert
                raise DuplicateHouseholdError(f"Household {code!r} already exists", household_code=code) from e
            record_audit(
                session, "households", code, "INSERT",
                user_id=principal.identity, new_values=attribution.codes(),
            )
            PROPAGATION_WRITES.labels(operation="create_household", table="households").inc()
            return HouseholdRecord.model_validate(household)

        return self._run("create_household", principal, work)

    def on_resident_create(
        self,
        principal: AnyPrincipal,
        data: ResidentCreate,
        household_code: Optional[str] = None,
    ) -> OperationResult[ResidentRecord]:
        """Insert a resident with codes copied from its household, or expanded from a barangay"""
        household_code = household_code or data.household_code

        def work(session: Session, principal: Principal) -> ResidentRecord:
            if household_code:
                household = self._lock_household(session, household_code)
                if data.barangay_code and data.barangay_code != household.barangay_code:
                    raise InvalidChangeError(
                        "Resident barangay must match its household",
                        household_code=household_code, barangay_code=data.barangay_code,
                    )
                attribution = Attribution.of(household)
            else:
                attribution = Attribution.from_chain(self._chain_for(principal, data.barangay_code))
            self._require_write(principal, attribution, "create residents")

            resident = Resident(
                household_code=household_code,
                first_name=data.first_name,
                middle_name=data.middle_name,
                last_name=data.last_name,
                birthdate=data.birthdate,
                sex=data.sex,
                is_active=True,
                created_by=principal.identity,
                updated_by=principal.identity,
                **attribution.codes(),
            )
            session.add(resident)
            session.flush()
            record_audit(
                session, "residents", resident.id, "INSERT",
                user_id=principal.identity,
                new_values={"household_code": household_code, **attribution.codes()},
            )
            if household_code:
                refresh_member_counts(session, self.system_filter, [household_code])
            PROPAGATION_WRITES.labels(operation="resident_create", table="residents").inc()
            return ResidentRecord.model_validate(resident)

        return self._run("resident_create", principal, work)

    def on_household_relocate(
        self,
        principal: AnyPrincipal,
        household_code: str,
        new_barangay_code: str,
    ) -> OperationResult[RelocationResult]:
        """
        Move a household to another barangay.

        The household row is locked, its four codes rewritten, and every
        active resident referencing it rewritten in chunks, all in one
        transaction.
        """

        def work(session: Session, principal: Principal) -> RelocationResult:
            new_attribution = Attribution.from_chain(self.geography.resolve_barangay_chain(new_barangay_code))
            household = self._lock_household(session, household_code)
            old_attribution = Attribution.of(household)

            if not decide_relocation(principal, old_attribution, new_attribution).can_write:
                raise AccessDeniedError(
                    f"Principal {principal.identity!r} may not relocate {household_code!r} to {new_barangay_code!r}",
                    principal=principal.identity,
                    old=old_attribution.codes(),
                    new=new_attribution.codes(),
                )

            codes = new_attribution.codes()
            for field, value in codes.items():
                setattr(household, field, value)
            household.updated_by = principal.identity
            session.flush()

            member_ids = self._active_member_ids(session, household_code)
            updated = 0
            for chunk in _chunks(member_ids, self.chunk_size):
                updated += self._propagate_chunk(session, chunk, codes, principal.identity)
                logger.debug("Propagated relocation chunk", household_code=household_code, chunk_size=len(chunk))

            for obj in list(session.identity_map.values()):
                if isinstance(obj, Resident) and obj.id in member_ids:
                    session.expire(obj)

            record_audit(
                session, "households", household_code, "RELOCATE",
                user_id=principal.identity,
                old_values=old_attribution.codes(),
                new_values={**codes, "residents_updated": updated},
            )
            PROPAGATION_WRITES.labels(operation="household_relocate", table="households").inc()
            PROPAGATION_WRITES.labels(operation="household_relocate", table="residents").inc(updated)
            logger.info(
                "Relocated household",
                household_code=household_code,
                from_barangay=old_attribution.barangay_code,
                to_barangay=new_barangay_code,
                residents_updated=updated,
            )
            return RelocationResult(
                household=HouseholdRecord.model_validate(household),
                previous=AttributionCodes(**old_attribution.codes()),
                residents_updated=updated,
            )

        return self._run("household_relocate", principal, work)

    def on_resident_reassign_household(
        self,
        principal: AnyPrincipal,
        resident_id: str,
        new_household_code: str,
    ) -> OperationResult[ResidentRecord]:
        """Move a resident into another household, copying its codes"""

        def work(session: Session, principal: Principal) -> ResidentRecord:
            resident = self._lock_resident(session, resident_id)
            current_code = resident.household_code

            # Lock both households in code order
            locked: Dict[str, Household] = {}
            for code in sorted({c for c in (current_code, new_household_code) if c}):
                if code == new_household_code:
                    locked[code] = self._lock_household(session, code)
                else:
                    previous = session.get(
                        Household, code,
                        with_for_update=True,
                        execution_options=self.system_filter.execution_options(),
                    )
                    if previous is not None:
                        locked[code] = previous
            target = locked[new_household_code]

            self._require_write(principal, Attribution.of(resident), "move this resident")
            self._require_write(principal, Attribution.of(target), "add residents to this household")

            if current_code == new_household_code:
                return ResidentRecord.model_validate(resident)

            old_values = {"household_code": current_code, **_codes(resident)}
            resident.household_code = new_household_code
            for field, value in _codes(target).items():
                setattr(resident, field, value)
            resident.updated_by = principal.identity

            previous = locked.get(current_code) if current_code else None
            if previous is not None and previous.household_head_id == resident.id:
                previous.household_head_id = None
            session.flush()

            record_audit(
                session, "residents", resident.id, "REASSIGN",
                user_id=principal.identity,
                old_values=old_values,
                new_values={"household_code": new_household_code, **_codes(target)},
            )
            refresh_member_counts(session, self.system_filter, [current_code, new_household_code])
            PROPAGATION_WRITES.labels(operation="resident_reassign", table="residents").inc()
            return ResidentRecord.model_validate(resident)

        return self._run("resident_reassign", principal, work)

    def update_household(
        self,
        principal: AnyPrincipal,
        household_code: str,
        changes: Union[HouseholdUpdate, Mapping[str, Any]],
    ) -> OperationResult[HouseholdRecord]:
        """Change address, name or head; geographic codes are refused here"""

        def work(session: Session, principal: Principal) -> HouseholdRecord:
            if isinstance(changes, HouseholdUpdate):
                update_data = changes
            else:
                try:
                    update_data = HouseholdUpdate.model_validate(dict(changes))
                except ValidationError as e:
                    refused = sorted(
                        str(err["loc"][0]) for err in e.errors() if err.get("type") == "extra_forbidden"
                    )
                    raise InvalidChangeError(
                        f"Household update refused fields {refused}" if refused else "Household update is invalid",
                        household_code=household_code, fields=refused,
                    )
            values = update_data.model_dump(exclude_unset=True)

            household = self._lock_household(session, household_code)
            self._require_write(principal, Attribution.of(household), "update this household")

            head_id = values.get("household_head_id")
            if head_id is not None:
                head = session.get(Resident, head_id, execution_options=self.system_filter.execution_options())
                if head is None or not head.is_active or head.household_code != household_code:
                    raise InvalidChangeError(
                        f"Household head {head_id!r} is not an active member of {household_code!r}",
                        household_code=household_code, household_head_id=head_id,
                    )

            old_values = {field: getattr(household, field) for field in values}
            for field, value in values.items():
                setattr(household, field, value)
            household.updated_by = principal.identity
            session.flush()

            record_audit(
                session, "households", household_code, "UPDATE",
                user_id=principal.identity, old_values=old_values, new_values=values,
            )
            PROPAGATION_WRITES.labels(operation="update_household", table="households").inc()
            return HouseholdRecord.model_validate(household)

        return self._run("update_household", principal, work)

    def deactivate_resident(
        self,
        principal: AnyPrincipal,
        resident_id: str,
        reason: Optional[str] = None,
    ) -> OperationResult[ResidentRecord]:
        """Soft-delete a resident and recount its household"""

        def work(session: Session, principal: Principal) -> ResidentRecord:
            resident = self._lock_resident(session, resident_id)
            self._require_write(principal, Attribution.of(resident), "deactivate this resident")

            household_code = resident.household_code
            if household_code:
                household = session.get(
                    Household, household_code,
                    with_for_update=True,
                    execution_options=self.system_filter.execution_options(),
                )
                if household is not None and household.household_head_id == resident.id:
                    household.household_head_id = None

            resident.is_active = False
            resident.updated_by = principal.identity
            session.flush()

            record_audit(
                session, "residents", resident.id, "DEACTIVATE",
                user_id=principal.identity,
                old_values={"is_active": True}, new_values={"is_active": False},
                reason=reason,
            )
            refresh_member_counts(session, self.system_filter, [household_code])
            PROPAGATION_WRITES.labels(operation="deactivate_resident", table="residents").inc()
            return ResidentRecord.model_validate(resident)

        return self._run("deactivate_resident", principal, work)

    def repair_attribution(
        self,
        principal: AnyPrincipal,
        household_code: str,
        reason: str,
    ) -> OperationResult[RepairResult]:
        """
        Copy a household's codes onto its drifted residents.

        This is the explicit, audited counterpart of the drift diagnostic;
        one audit entry is written per repaired resident.
        """

        def work(session: Session, principal: Principal) -> RepairResult:
            if not reason or not reason.strip():
                raise InvalidChangeError("Attribution repair requires a reason", household_code=household_code)

            household = self._lock_household(session, household_code)
            self._require_write(principal, Attribution.of(household), "repair this household")
            expected = _codes(household)

            stmt = (
                select(Resident)
                .where(Resident.household_code == household_code, Resident.is_active.is_(True))
                .order_by(Resident.id)
                .with_for_update()
            )
            repaired: List[str] = []
            for resident in session.execute(self.system_filter.apply(stmt, Resident)).scalars():
                actual = _codes(resident)
                if actual == expected:
                    continue
                for field, value in expected.items():
                    setattr(resident, field, value)
                resident.updated_by = principal.identity
                record_audit(
                    session, "residents", resident.id, "REPAIR",
                    user_id=principal.identity, old_values=actual, new_values=expected, reason=reason,
                )
                repaired.append(resident.id)
            session.flush()

            PROPAGATION_WRITES.labels(operation="repair_attribution", table="residents").inc(len(repaired))
            logger.warning(
                "Repaired attribution drift",
                household_code=household_code,
                repaired=len(repaired),
                principal=principal.identity,
                reason=reason,
            )
            return RepairResult(household_code=household_code, repaired_resident_ids=repaired)

        return self._run("repair_attribution", principal, work)
