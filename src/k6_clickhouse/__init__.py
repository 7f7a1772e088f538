"""k6_clickhouse - ship k6 metric samples to ClickHouse in periodic batches."""

__version__ = "0.3.0"
