"""Host registration: the ``clickhouse`` entry of the ``k6.outputs`` group."""

from __future__ import annotations

from .errors import ClickHouseOutputError, ExtensionInitError
from .output import Output, OutputParams

OUTPUT_NAME = "clickhouse"


def new_output(params: OutputParams) -> Output:
    """Create the ClickHouse output for the host."""
    try:
        return Output(params)
    except ClickHouseOutputError as exc:
        raise ExtensionInitError(f"could not initialize ClickHouse extension: {exc}") from exc
