"""Command-line interface for RBI access management"""

import json
import sys
from typing import Optional, Tuple

import click
import structlog

from rbi_access.database import PrivilegedSessionLocal
from rbi_access.ingestion.psgc import PSGCLoader
from rbi_access.log_config import configure_logging
from rbi_access.schemas.diagnostics import ReportStatus, ResourceType
from rbi_access.services.diagnostics import DiagnosticService
from rbi_access.services.geography import GeographyReferenceStore, set_geography_store
from rbi_access.services.policy import Principal, resolve_principal
from rbi_access.services.rls import render_rls_ddl

logger = structlog.get_logger()


def _load_store() -> GeographyReferenceStore:
    with PrivilegedSessionLocal() as db:
        store = GeographyReferenceStore.from_session(db)
    set_geography_store(store)
    return store


def _emit(report) -> None:
    click.echo(json.dumps(report.model_dump(mode="json"), indent=2))


def _exit_for(report) -> None:
    if report.status != ReportStatus.OK:
        sys.exit(1)


@click.group()
@click.option('--log-format', type=click.Choice(['json', 'console']), default=None, help='Override LOG_FORMAT')
def cli(log_format: Optional[str]):
    """RBI Access Management CLI"""
    configure_logging(log_format=log_format)


@cli.group()
def geography():
    """PSGC reference data commands"""
    pass


@geography.command('load')
@click.argument('directory', type=click.Path(exists=True, file_okay=False))
@click.option('--append', is_flag=True, help='Keep existing reference rows')
def load_geography(directory: str, append: bool):
    """Load PSGC CSV files from DIRECTORY"""
    db = PrivilegedSessionLocal()
    loader = PSGCLoader(db)
    try:
        counts = loader.load_directory(directory, replace=not append)
        db.commit()
    except Exception as e:
        db.rollback()
        click.echo(f"❌ PSGC load failed: {e}")
        logger.error("CLI PSGC load failed", error=str(e), exc_info=True)
        sys.exit(1)
    finally:
        db.close()

    click.echo("✅ PSGC load completed")
    for table, count in counts.items():
        click.echo(f"   {table}: {count}")
    if loader.rejects:
        click.echo(f"⚠️  Rejected rows: {len(loader.rejects)}")
        for reject in loader.rejects:
            click.echo(f"   - {reject['table']} {reject['code']}: {reject['reason']}")


@geography.command('check')
@click.option('--code', '-c', help='Check one code instead of the whole store')
def check_geography(code: Optional[str]):
    """Verify reference codes resolve to complete parent chains"""
    service = DiagnosticService(geography=_load_store())
    report = service.check_code_integrity(code) if code else service.scan_code_integrity()
    _emit(report)
    _exit_for(report)


@cli.group()
def diagnostics():
    """Consistency diagnostics"""
    pass


@diagnostics.command('drift')
@click.option('--household', 'household_code', help='Check one household instead of all')
def drift(household_code: Optional[str]):
    """Report residents whose codes differ from their household's"""
    service = DiagnosticService(geography=_load_store())
    if household_code:
        report = service.check_attribution_drift(household_code)
    else:
        report = service.scan_attribution_drift()
    _emit(report)
    _exit_for(report)


@diagnostics.command('parity')
@click.option('--identity', required=True, help='Principal identity')
@click.option('--role', required=True, help='Principal role')
@click.option('--code', default=None, help='Principal assigned geographic code')
@click.option('--type', 'resource_type', type=click.Choice([t.value for t in ResourceType]),
              default=ResourceType.RESIDENT.value, help='Resource type of the ids')
@click.argument('resource_ids', nargs=-1, required=True)
def parity(identity: str, role: str, code: Optional[str], resource_type: str, resource_ids: Tuple[str, ...]):
    """Compare enforcement paths for a principal over RESOURCE_IDS"""
    store = _load_store()
    principal = resolve_principal(identity, role, code, store)
    if not isinstance(principal, Principal):
        click.echo(f"⚠️  Principal unresolved: {principal.reason}; every path must deny")

    report = DiagnosticService(geography=store).check_decision_parity(
        principal, list(resource_ids), ResourceType(resource_type)
    )
    _emit(report)
    _exit_for(report)


@cli.group()
def rls():
    """PostgreSQL row-level security"""
    pass


@rls.command('render')
def render():
    """Print the row-level security DDL"""
    click.echo(render_rls_ddl())


if __name__ == '__main__':
    cli()
