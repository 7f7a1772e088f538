"""Batch insert query wrapper used by one flush cycle."""

from __future__ import annotations

import enum
import logging

from ..deadline import Deadline
from ..errors import (
    BatchAppendError,
    BatchPrepareError,
    BatchSendError,
    BatchStateError,
    ClickHouseOutputError,
)
from ..sample import OUTPUT_ROW_COLUMNS, OutputRow
from .connection import Connection, DriverBatch


class BatchState(enum.Enum):
    PREPARED = "prepared"
    SENT = "sent"
    FAILED = "failed"


class Batch:
    """A batch insert query.

    Rows are only ever sent all together: once an append fails the batch is
    unusable and must be discarded.
    """

    def __init__(
        self,
        driver_batch: DriverBatch,
        logger: logging.Logger,
        deadline: Deadline | None = None,
    ) -> None:
        self._batch = driver_batch
        self._logger = logger
        self._deadline = deadline
        self.state = BatchState.PREPARED

    @property
    def rows(self) -> int:
        return self._batch.rows

    def _remaining(self) -> float | None:
        return self._deadline.remaining() if self._deadline is not None else None

    def _require_prepared(self) -> None:
        if self.state is not BatchState.PREPARED:
            raise BatchStateError(f"batch is {self.state.value}, expected prepared")

    def append(self, row: OutputRow) -> None:
        self._require_prepared()
        try:
            if self._deadline is not None:
                self._deadline.check("append row")
            self._batch.append(row.as_dict())
        except (ClickHouseOutputError, KeyError, TypeError, ValueError) as exc:
            self.state = BatchState.FAILED
            self._logger.error("Error appending row to batch: %s", exc)
            raise BatchAppendError(f"{BatchAppendError.default_message}: {exc}") from exc

    def send(self) -> None:
        self._require_prepared()
        self._logger.debug("Sending batch", extra={"count": self.rows})
        try:
            if self._deadline is not None:
                self._deadline.check("send batch")
            self._batch.send(timeout=self._remaining())
        except ClickHouseOutputError as exc:
            self.state = BatchState.FAILED
            self._logger.error("Error sending batch: %s", exc)
            raise BatchSendError(f"{BatchSendError.default_message}: {exc}") from exc
        self.state = BatchState.SENT


def prepare_batch(
    conn: Connection,
    database: str,
    table: str,
    logger: logging.Logger,
    deadline: Deadline | None = None,
) -> Batch:
    """Prepare a batch insert into ``database.table``.

    Raises:
        BatchPrepareError: the deadline already passed or the driver failed.
    """
    logger.debug("Preparing batch insert query", extra={"database": database, "table": table})
    try:
        if deadline is not None:
            deadline.check("prepare batch")
        driver_batch = conn.prepare_batch(
            database,
            table,
            OUTPUT_ROW_COLUMNS,
            timeout=deadline.remaining() if deadline is not None else None,
        )
    except ClickHouseOutputError as exc:
        logger.error("Error preparing batch insert query: %s", exc)
        raise BatchPrepareError(f"{BatchPrepareError.default_message}: {exc}") from exc
    return Batch(driver_batch, logger, deadline)
