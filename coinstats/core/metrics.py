from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
)

ingestion_cycles_total = Counter(
    "coinstats_ingestion_cycles_total",
    "Total ingestion cycles",
    ["status"],  # success | failed
)

ingestion_cycles_skipped_total = Counter(
    "coinstats_ingestion_cycles_skipped_total",
    "Triggers skipped because a cycle was already in flight",
)

ingestion_samples_written_total = Counter(
    "coinstats_ingestion_samples_written_total",
    "Samples written by ingestion",
    ["coin"],
)

ingestion_cycle_duration = Histogram(
    "coinstats_ingestion_cycle_duration_seconds",
    "Duration of one fetch-and-write cycle in seconds",
)

ingestion_last_success_ts = Gauge(
    "coinstats_ingestion_last_success_timestamp",
    "Unix timestamp of the last successful ingestion cycle",
)

query_requests_total = Counter(
    "coinstats_query_requests_total",
    "Read requests served",
    ["endpoint", "outcome"],
)
