"""Metric samples and their ClickHouse row projection."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

OUTPUT_ROW_COLUMNS = (
    "account_id",
    "run_id",
    "region",
    "time",
    "metric",
    "value",
    "tags",
    "metadata",
)


@dataclass(frozen=True)
class Sample:
    """A single metric data point produced by the load generator."""

    time: datetime
    metric: str
    value: float
    tags: Mapping[str, str] = field(default_factory=dict)
    metadata: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class OutputRow:
    """A row of the run output table.

    Field names match the column names of the ClickHouse table.
    """

    account_id: str
    run_id: str
    region: str
    time: datetime
    metric: str
    value: float
    tags: Mapping[str, str]
    metadata: Mapping[str, str]

    @classmethod
    def from_sample(
        cls,
        sample: Sample,
        *,
        account_id: str = "",
        run_id: str = "",
        region: str = "",
    ) -> "OutputRow":
        return cls(
            account_id=account_id,
            run_id=run_id,
            region=region,
            time=sample.time,
            metric=sample.metric,
            value=float(sample.value),
            tags=dict(sample.tags),
            metadata=dict(sample.metadata),
        )

    def as_dict(self) -> dict[str, Any]:
        """Column name to value mapping, in table column order."""
        return {name: getattr(self, name) for name in OUTPUT_ROW_COLUMNS}
