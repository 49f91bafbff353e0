"""Prometheus counters for authorization and attribution consistency"""

from prometheus_client import Counter

ACCESS_DECISIONS = Counter(
    'rbi_access_decisions_total',
    'Access decisions evaluated',
    ['access_level', 'decision']
)
PROPAGATION_WRITES = Counter(
    'rbi_propagation_writes_total',
    'Records written by the attribution propagation engine',
    ['operation', 'table']
)
PROPAGATION_FAILURES = Counter(
    'rbi_propagation_failures_total',
    'Propagation operations rolled back',
    ['operation', 'error_code']
)
PARITY_VIOLATIONS = Counter(
    'rbi_decision_parity_violations_total',
    'Resources where enforcement paths disagreed',
    ['resource_type']
)
DRIFT_FINDINGS = Counter(
    'rbi_attribution_drift_findings_total',
    'Residents found with attribution differing from their household'
)
UNSCOPED_QUERIES = Counter(
    'rbi_unscoped_privileged_queries_total',
    'Privileged statements rejected for missing a scope filter',
    ['statement']
)
