"""Prometheus metrics for PrimePulse."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("primepulse", "PrimePulse application info")
app_info.info({"version": "0.1.0", "name": "primepulse"})

# Fetch metrics
fetches_total = Counter(
    "primepulse_fetches_total",
    "Total number of listing fetch results",
    ["path", "status"],
)

fetch_errors_total = Counter(
    "primepulse_fetch_errors_total",
    "Total number of failed direct fetch attempts",
    ["error_type"],
)

fetch_duration_seconds = Histogram(
    "primepulse_fetch_duration_seconds",
    "Time spent on one direct fetch attempt, successful or not",
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)

remote_fallbacks_total = Counter(
    "primepulse_remote_fallbacks_total",
    "Times the remote worker failed and direct fetching took over",
)

observations_stored_total = Counter(
    "primepulse_observations_stored_total",
    "Observations appended to the store",
)

# Alert metrics
alerts_generated_total = Counter(
    "primepulse_alerts_generated_total",
    "Alerts produced by the detector",
    ["kind", "severity"],
)

alerts_sent_total = Counter(
    "primepulse_alerts_sent_total",
    "Alert notifications delivered or failed",
    ["mode", "status"],
)

alerts_throttled_total = Counter(
    "primepulse_alerts_throttled_total",
    "Alerts dropped by the per-cycle cap",
)

threats_scored_total = Counter(
    "primepulse_threats_scored_total",
    "Threat assessments produced",
)

# Cycle metrics
cycle_runs_total = Counter(
    "primepulse_cycle_runs_total",
    "Total number of run cycles",
    ["status"],
)

cycle_duration_seconds = Histogram(
    "primepulse_cycle_duration_seconds",
    "Duration of a run cycle",
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0],
)

item_pipeline_errors_total = Counter(
    "primepulse_item_pipeline_errors_total",
    "Per-item extract/detect/score failures",
)

scheduler_runs_total = Counter(
    "primepulse_scheduler_runs_total",
    "Total number of scheduler job runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "primepulse_scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_fetch_result(path: str, success: bool):
    """Record one fetch result from the remote or direct path."""
    status = "success" if success else "error"
    fetches_total.labels(path=path, status=status).inc()


def record_fetch_attempt(duration: float):
    fetch_duration_seconds.observe(duration)


def record_fetch_error(error_type: str, duration: float):
    """Record a failed direct fetch attempt."""
    fetch_errors_total.labels(error_type=error_type).inc()
    record_fetch_attempt(duration)


def record_alert_generated(kind: str, severity: str):
    alerts_generated_total.labels(kind=kind, severity=severity).inc()


def record_alert_sent(mode: str, success: bool, count: int = 1):
    """Record alert delivery ("critical" single sends or "batch")."""
    status = "success" if success else "error"
    alerts_sent_total.labels(mode=mode, status=status).inc(count)


def record_cycle(success: bool, duration: float):
    status = "success" if success else "error"
    cycle_runs_total.labels(status=status).inc()
    cycle_duration_seconds.observe(duration)


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
