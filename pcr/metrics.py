# File: metrics.py

from prometheus_client import Counter, Histogram

METRICS = {
    "poll_iterations": Counter(
        "pcr_poll_iterations_total",
        "Probe invocations made by convergence polls",
        ["label"],
    ),
    "poll_outcomes": Counter(
        "pcr_poll_outcomes_total",
        "Convergence poll results",
        ["label", "outcome"],
    ),
    "poll_duration": Histogram(
        "pcr_poll_duration_seconds",
        "Wall time spent waiting for convergence",
        buckets=(1, 5, 15, 30, 60, 120, 300, 600),
    ),
    "transitions": Counter(
        "pcr_transitions_total",
        "Replication state machine transitions",
        ["direction", "transition", "outcome"],
    ),
    "sql_errors": Counter(
        "pcr_sql_errors_total",
        "Statements that failed on the command channel",
        ["role"],
    ),
    "node_replacements": Counter(
        "pcr_node_replacements_total",
        "Nodes restarted with a different image",
        ["role"],
    ),
    "api_requests": Counter(
        "pcr_api_requests_total",
        "Status API requests",
        ["method", "endpoint"],
    ),
}
