"""
Observability for the access subsystem

Prometheus counters shared by the services and the HTTP layer
"""

from .metrics import (
    ACCESS_DECISIONS,
    PROPAGATION_WRITES,
    PROPAGATION_FAILURES,
    PARITY_VIOLATIONS,
    DRIFT_FINDINGS,
    UNSCOPED_QUERIES,
)

__all__ = [
    'ACCESS_DECISIONS',
    'PROPAGATION_WRITES',
    'PROPAGATION_FAILURES',
    'PARITY_VIOLATIONS',
    'DRIFT_FINDINGS',
    'UNSCOPED_QUERIES',
]
