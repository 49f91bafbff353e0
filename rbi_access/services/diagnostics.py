"""
Consistency Diagnostic Subsystem.

Read-only checks for enforcement-path parity, resident/household
attribution drift and reference-code integrity. Reads run in a consistent
snapshot that is always rolled back; findings are reported, never repaired.
"""

import threading
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set

import structlog
from sqlalchemy import select

from rbi_access.config import settings
from rbi_access.errors import ErrorCode
from rbi_access.models.records import Household, Resident
from rbi_access.observability.metrics import DRIFT_FINDINGS, PARITY_VIOLATIONS
from rbi_access.schemas.common import AttributionCodes
from rbi_access.schemas.diagnostics import (
    CodeIntegrityReport,
    DriftFinding,
    DriftReport,
    DriftScanReport,
    FieldMismatch,
    IntegrityFinding,
    IntegrityScanReport,
    ParityFinding,
    ParityReport,
    ReportStatus,
    ResourceType,
)
from rbi_access.services.enforcement import (
    build_filter_predicate,
    principal_session,
    privileged_session,
    snapshot_session,
)
from rbi_access.services.geography import (
    GeoLevel,
    GeographyReferenceStore,
    IssueSeverity,
    get_geography_store,
)
from rbi_access.services.policy import AnyPrincipal, Attribution, Principal, decide

logger = structlog.get_logger()

CODE_FIELDS = ("barangay_code", "city_code", "province_code", "region_code")

# Re-observations of a batch whose records changed mid-read
PARITY_RECHECKS = 2


class CancellationToken:
    """Caller-owned cancellation signal, checked between chunks"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class _Cancelled(Exception):
    pass


def _check(token: Optional[CancellationToken]) -> None:
    if token is not None and token.cancelled:
        raise _Cancelled()


def _chunks(items: Sequence[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def _drift_findings(household: Household, residents: Iterable[Resident]) -> List[DriftFinding]:
    findings = []
    for resident in residents:
        mismatches = [
            FieldMismatch(field=field, expected=getattr(household, field), actual=getattr(resident, field))
            for field in CODE_FIELDS
            if getattr(resident, field) != getattr(household, field)
        ]
        if mismatches:
            findings.append(DriftFinding(resident_id=resident.id, mismatches=mismatches))
    return findings


class DiagnosticService:
    """On-demand consistency checks; instances hold no shared mutable state"""

    def __init__(
        self,
        session_factory=None,
        privileged_session_factory=None,
        geography: Optional[GeographyReferenceStore] = None,
        chunk_size: Optional[int] = None,
        max_sample: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.privileged_session_factory = privileged_session_factory
        self._geography = geography
        self.chunk_size = chunk_size or settings.diagnostic_chunk_size
        self.max_sample = max_sample or settings.diagnostic_max_sample
        self.system_filter = build_filter_predicate(Principal.system("consistency-diagnostics"))

    @property
    def geography(self) -> GeographyReferenceStore:
        if self._geography is None:
            self._geography = get_geography_store()
        return self._geography

    def _snapshot(self):
        return snapshot_session(self.privileged_session_factory)

    def _attributions(self, model, key, ids: Sequence[str]) -> Dict[str, Attribution]:
        with self._snapshot() as snapshot:
            stmt = self.system_filter.apply(select(model).where(key.in_(ids)), model)
            return {getattr(r, key.key): Attribution.of(r) for r in snapshot.execute(stmt).scalars()}

    def _observe(self, principal: AnyPrincipal, scope_filter, model, key, ids: Sequence[str]):
        """
        Read one batch through both enforcement paths, bracketed by two
        snapshot reads of the stored attribution.

        Ids whose attribution differs between the brackets were changed by a
        concurrent write mid-read; they are returned in `moved` and their
        observations must not be compared.
        """
        before = self._attributions(model, key, ids)

        with principal_session(principal, self.session_factory) as session:
            declarative = set(session.execute(select(key).where(key.in_(ids))).scalars())
            session.rollback()

        with privileged_session(self.privileged_session_factory) as session:
            stmt = scope_filter.apply(select(key).where(key.in_(ids)), model)
            privileged = set(session.execute(stmt).scalars())
            session.rollback()

        after = self._attributions(model, key, ids)
        moved = {resource_id for resource_id in ids if before.get(resource_id) != after.get(resource_id)}
        return before, declarative, privileged, moved

    def check_decision_parity(
        self,
        principal: AnyPrincipal,
        sample_resource_ids: Sequence[str],
        resource_type: ResourceType = ResourceType.RESIDENT,
        cancel_token: Optional[CancellationToken] = None,
    ) -> ParityReport:
        """
        Run the same reads through the policy model, the declarative path
        and the privileged path, and report every resource where they differ.
        """
        resource_type = ResourceType(resource_type)
        model = Resident if resource_type == ResourceType.RESIDENT else Household
        key = Resident.id if model is Resident else Household.code
        principal_id = getattr(principal, "identity", None)

        ids = list(dict.fromkeys(sample_resource_ids))
        message = None
        if len(ids) > self.max_sample:
            message = f"sample truncated to {self.max_sample} ids"
            ids = ids[:self.max_sample]

        report = ParityReport(principal_id=principal_id, resource_type=resource_type, message=message)
        scope_filter = build_filter_predicate(principal)

        try:
            for chunk in _chunks(ids, self.chunk_size):
                _check(cancel_token)

                pending = chunk
                for attempt in range(PARITY_RECHECKS + 1):
                    records, declarative, privileged, moved = self._observe(
                        principal, scope_filter, model, key, pending
                    )
                    for resource_id in pending:
                        if resource_id in moved:
                            continue
                        attribution = records.get(resource_id)
                        if attribution is None:
                            report.missing_ids.append(resource_id)
                            continue
                        report.checked += 1
                        decision = decide(principal, attribution)
                        policy_visible = decision.can_read
                        declarative_visible = resource_id in declarative
                        privileged_visible = resource_id in privileged
                        if policy_visible == declarative_visible == privileged_visible:
                            continue
                        report.findings.append(ParityFinding(
                            resource_id=resource_id,
                            policy_decision=decision.value,
                            policy_visible=policy_visible,
                            declarative_visible=declarative_visible,
                            privileged_visible=privileged_visible,
                        ))
                    pending = [resource_id for resource_id in pending if resource_id in moved]
                    if not pending:
                        break
                    logger.info("Re-observing records changed during parity read", count=len(pending), attempt=attempt + 1)
                report.unstable_ids.extend(pending)
        except _Cancelled:
            logger.info("Parity check cancelled", principal=principal_id, checked=report.checked)
            return ParityReport(
                status=ReportStatus.CANCELLED,
                principal_id=principal_id,
                resource_type=resource_type,
                message="cancelled",
            )

        if report.unstable_ids:
            note = f"{len(report.unstable_ids)} ids kept changing during the check"
            report.message = f"{report.message}; {note}" if report.message else note

        if report.findings:
            report.status = ReportStatus.VIOLATIONS
            report.error_code = ErrorCode.DECISION_PARITY_VIOLATION.value
            PARITY_VIOLATIONS.labels(resource_type=resource_type.value).inc(len(report.findings))
            logger.critical(
                "Decision parity violation",
                principal=principal_id,
                resource_type=resource_type.value,
                resource_ids=[f.resource_id for f in report.findings],
            )
        else:
            logger.info(
                "Decision parity holds",
                principal=principal_id,
                checked=report.checked,
                missing=len(report.missing_ids),
                unstable=len(report.unstable_ids),
            )
        return report

    def check_attribution_drift(
        self,
        household_code: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> DriftReport:
        """Compare a household's codes with every active resident referencing it"""
        try:
            with self._snapshot() as snapshot:
                household = snapshot.get(
                    Household, household_code, execution_options=self.system_filter.execution_options()
                )
                if household is None:
                    return DriftReport(
                        status=ReportStatus.FAILED,
                        household_code=household_code,
                        error_code=ErrorCode.HOUSEHOLD_NOT_FOUND.value,
                        message=f"Household {household_code!r} not found",
                    )

                stmt = (
                    select(Resident)
                    .where(Resident.household_code == household_code, Resident.is_active.is_(True))
                    .order_by(Resident.id)
                )
                result = snapshot.execute(self.system_filter.apply(stmt, Resident)).scalars()
                report = DriftReport(
                    household_code=household_code,
                    expected=AttributionCodes.model_validate({f: getattr(household, f) for f in CODE_FIELDS}),
                )
                for partition in result.partitions(self.chunk_size):
                    _check(cancel_token)
                    report.residents_checked += len(partition)
                    report.findings.extend(_drift_findings(household, partition))
        except _Cancelled:
            logger.info("Drift check cancelled", household_code=household_code)
            return DriftReport(status=ReportStatus.CANCELLED, household_code=household_code, message="cancelled")

        if report.findings:
            report.status = ReportStatus.VIOLATIONS
            report.error_code = ErrorCode.ATTRIBUTION_DRIFT.value
            DRIFT_FINDINGS.inc(len(report.findings))
            logger.warning(
                "Attribution drift detected",
                household_code=household_code,
                resident_ids=[f.resident_id for f in report.findings],
            )
        return report

    def scan_attribution_drift(self, cancel_token: Optional[CancellationToken] = None) -> DriftScanReport:
        """Drift check over every active household, chunked"""
        scan = DriftScanReport()
        try:
            with self._snapshot() as snapshot:
                stmt = select(Household.code).where(Household.is_active.is_(True)).order_by(Household.code)
                codes = list(snapshot.execute(self.system_filter.apply(stmt, Household)).scalars())

                for chunk in _chunks(codes, self.chunk_size):
                    _check(cancel_token)
                    households = snapshot.execute(
                        self.system_filter.apply(select(Household).where(Household.code.in_(chunk)), Household)
                    ).scalars().all()
                    members: Dict[str, List[Resident]] = {code: [] for code in chunk}
                    residents = snapshot.execute(self.system_filter.apply(
                        select(Resident)
                        .where(Resident.household_code.in_(chunk), Resident.is_active.is_(True))
                        .order_by(Resident.id),
                        Resident,
                    )).scalars()
                    for resident in residents:
                        members[resident.household_code].append(resident)

                    for household in households:
                        findings = _drift_findings(household, members[household.code])
                        scan.households_checked += 1
                        if findings:
                            scan.households.append(DriftReport(
                                status=ReportStatus.VIOLATIONS,
                                error_code=ErrorCode.ATTRIBUTION_DRIFT.value,
                                household_code=household.code,
                                expected=AttributionCodes.model_validate(
                                    {f: getattr(household, f) for f in CODE_FIELDS}
                                ),
                                residents_checked=len(members[household.code]),
                                findings=findings,
                            ))
        except _Cancelled:
            logger.info("Drift scan cancelled", households_checked=scan.households_checked)
            return DriftScanReport(status=ReportStatus.CANCELLED, message="cancelled")

        if scan.households:
            scan.status = ReportStatus.VIOLATIONS
            scan.error_code = ErrorCode.ATTRIBUTION_DRIFT.value
            drifted = sum(len(h.findings) for h in scan.households)
            DRIFT_FINDINGS.inc(drifted)
            logger.warning("Drift scan found violations", households=len(scan.households), residents=drifted)
        logger.info("Drift scan complete", households_checked=scan.households_checked)
        return scan

    def check_code_integrity(self, geographic_code: str) -> CodeIntegrityReport:
        """Verify a code exists and its parent chain resolves without gaps"""
        resolution = self.geography.walk_chain(geographic_code)
        report = CodeIntegrityReport(
            code=geographic_code,
            level=resolution.level.value if resolution.level else None,
            chain=AttributionCodes(**resolution.chain.as_dict()) if resolution.chain else None,
            findings=[
                IntegrityFinding(code=i.code, severity=i.severity.value, message=i.message)
                for i in resolution.issues
            ],
        )
        if not resolution.is_valid:
            report.status = ReportStatus.VIOLATIONS
            report.error_code = ErrorCode.CODE_INTEGRITY_VIOLATION.value
            logger.warning("Code integrity violation", code=geographic_code, issues=len(report.findings))
        return report

    def scan_code_integrity(self, cancel_token: Optional[CancellationToken] = None) -> IntegrityScanReport:
        """
        Audit the whole reference store, then every active household's
        stamped codes against the chain of its barangay.
        """
        scan = IntegrityScanReport()
        store = self.geography
        codes: List[str] = []
        for level in (GeoLevel.REGION, GeoLevel.PROVINCE, GeoLevel.CITY, GeoLevel.BARANGAY):
            codes.extend(store.codes_at(level))

        try:
            for chunk in _chunks(codes, self.chunk_size):
                _check(cancel_token)
                for code in chunk:
                    scan.codes_checked += 1
                    for issue in store.walk_chain(code).issues:
                        scan.findings.append(
                            IntegrityFinding(code=issue.code, severity=issue.severity.value, message=issue.message)
                        )

            with self._snapshot() as snapshot:
                stmt = select(Household).where(Household.is_active.is_(True)).order_by(Household.code)
                result = snapshot.execute(self.system_filter.apply(stmt, Household)).scalars()
                for partition in result.partitions(self.chunk_size):
                    _check(cancel_token)
                    for household in partition:
                        scan.findings.extend(self._household_chain_findings(store, household))
        except _Cancelled:
            logger.info("Integrity scan cancelled", codes_checked=scan.codes_checked)
            return IntegrityScanReport(status=ReportStatus.CANCELLED, message="cancelled")

        if any(f.severity == IssueSeverity.ERROR.value for f in scan.findings):
            scan.status = ReportStatus.VIOLATIONS
            scan.error_code = ErrorCode.CODE_INTEGRITY_VIOLATION.value
            logger.warning("Integrity scan found violations", findings=len(scan.findings))
        logger.info("Integrity scan complete", codes_checked=scan.codes_checked, findings=len(scan.findings))
        return scan

    @staticmethod
    def _household_chain_findings(store: GeographyReferenceStore, household: Household) -> List[IntegrityFinding]:
        resolution = store.walk_chain(household.barangay_code)
        if not resolution.is_valid:
            return [IntegrityFinding(
                code=household.barangay_code,
                severity=IssueSeverity.ERROR.value,
                message=f"household {household.code} is stamped with an unresolvable barangay",
            )]
        expected = resolution.chain.as_dict()
        mismatched: Set[str] = {f for f in CODE_FIELDS if getattr(household, f) != expected[f]}
        if not mismatched:
            return []
        return [IntegrityFinding(
            code=household.barangay_code,
            severity=IssueSeverity.ERROR.value,
            message=f"household {household.code} codes disagree with the reference chain: {sorted(mismatched)}",
        )]
