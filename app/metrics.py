from prometheus_client import Counter, Gauge

approval_requests_created_total = Counter(
    "sharegate_approval_requests_created_total",
    "Approval requests opened for new shares",
    ["priority"],
)

approval_decisions_total = Counter(
    "sharegate_approval_decisions_total",
    "Approver decisions recorded",
    ["decision"],  # approved|rejected
)

approval_requests_expired_total = Counter(
    "sharegate_approval_requests_expired_total",
    "Pending approval requests expired by the sweeper",
)

approval_concurrency_conflicts_total = Counter(
    "sharegate_approval_concurrency_conflicts_total",
    "Decisions rejected because the request changed underneath them",
)

approval_sweep_failures_total = Counter(
    "sharegate_approval_sweep_failures_total",
    "Expiry sweeps that raised",
)

approval_sweeper_circuit_open = Gauge(
    "sharegate_approval_sweeper_circuit_open",
    "1 while the expiry sweeper is in its cooldown window",
)

outbox_events_dispatched_total = Counter(
    "sharegate_outbox_events_dispatched_total",
    "Outbox events handed to their handler",
    ["event_type", "status"],  # status: success|error
)
