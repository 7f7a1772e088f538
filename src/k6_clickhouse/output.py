"""The ClickHouse output: lifecycle and flush orchestration.

The host constructs an :class:`Output`, calls :meth:`Output.start`, feeds it
samples through :meth:`Output.add_metric_samples` for the duration of the
test run and finally calls :meth:`Output.stop`. In between, a
:class:`~k6_clickhouse.flusher.PeriodicFlusher` drains the buffer every push
interval and ships the samples as one batch insert.

Delivery is best effort: a failed flush cycle is logged and its samples are
dropped, the next cycle starts from scratch.
"""

from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field, replace
from typing import IO, Callable, Iterable, Mapping

from .buffer import SampleBuffer
from .clickhouse.batch import prepare_batch
from .clickhouse.connection import Connection, open_connection, quote_identifier, table_ref
from .config import ClientOptions, Config, redact_dsn, resolve
from .deadline import Deadline
from .errors import (
    BatchError,
    ClickHouseOutputError,
    DatabaseNotFoundError,
    LifecycleError,
    StopError,
    TableNotFoundError,
)
from .flusher import PeriodicFlusher
from .log import flush_logger, new_logger
from .sample import OutputRow, Sample

ConnectionFactory = Callable[[ClientOptions], Connection]


@dataclass
class OutputParams:
    """What the host hands over when it creates the output."""

    json_config: bytes | str | None = None
    environment: Mapping[str, str] = field(default_factory=dict)
    config_argument: str = ""
    stdout: IO[str] | None = None


class OutputState(enum.Enum):
    CREATED = "created"
    STARTED = "started"
    RUNNING = "running"
    STOPPED = "stopped"


class Output:
    """Buffers metric samples and periodically inserts them into ClickHouse."""

    def __init__(
        self,
        params: OutputParams,
        *,
        connection_factory: ConnectionFactory = open_connection,
    ) -> None:
        self.config: Config = resolve(
            params.json_config, params.environment, params.config_argument
        )
        self.logger = new_logger(self.config.log_level, params.stdout)

        options = self.config.client_options
        if options is None:
            options = ClientOptions()
            self.logger.warning(
                "No DSN configured, falling back to %s:%s", options.host, options.port
            )
        if options.read_timeout is None:
            # socket waits never outlast one flush cycle
            options = replace(options, read_timeout=self.config.push_interval)
        self._options = options

        self.logger.debug(
            "Opening connection to ClickHouse", extra={"host": options.host, "port": options.port}
        )
        self._conn = connection_factory(options)

        self._buffer = SampleBuffer()
        self._flusher: PeriodicFlusher | None = None
        self._flush_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stopping = False
        self.state = OutputState.CREATED

        self.samples_sent = 0
        self.samples_dropped = 0
        self.failed_cycles = 0

    @property
    def database(self) -> str:
        return self._options.database

    @property
    def table(self) -> str:
        return self.config.table

    def description(self) -> str:
        """Human-readable description shown by the host."""
        if self.config.dsn:
            return f"clickhouse ({redact_dsn(self.config.dsn)})"
        return f"clickhouse ({self._options.host}:{self._options.port})"

    # Lifecycle ---------------------------------------------------------------

    def start(self) -> None:
        """Verify the destination and start the periodic flusher.

        Raises:
            LifecycleError: the output was already started, or was stopped
                before or during verification.
            DatabaseNotFoundError: the database cannot be used.
            TableNotFoundError: the output table cannot be described.
            FlusherError: the flusher could not be created.
        """
        with self._state_lock:
            if self.state is not OutputState.CREATED or self._stopping:
                raise LifecycleError(f"cannot start output in state {self.state.value}")

        self.logger.debug("Starting")
        self._verify()

        # stop() either sees the flusher or start() sees _stopping
        with self._state_lock:
            if self._stopping or self.state is not OutputState.CREATED:
                raise LifecycleError("output was stopped while starting")
            self.state = OutputState.STARTED

            self.logger.debug(
                "Creating periodic flusher (push_interval=%.3fs)", self.config.push_interval
            )
            self._flusher = PeriodicFlusher(self.config.push_interval, self.flush, self.logger)
            self._flusher.start()
            self.state = OutputState.RUNNING
        self.logger.debug("Started")

    def _verify(self) -> None:
        deadline = Deadline(self.config.verification_timeout)
        database, table = self.database, self.table

        self.logger.debug("Verifying provided database", extra={"database": database})
        try:
            deadline.check("verify database")
            self._conn.exec(f"USE {quote_identifier(database)}", timeout=deadline.remaining())
        except ClickHouseOutputError as exc:
            self.logger.error("Provided database does not exist: %s", exc, extra={"database": database})
            raise DatabaseNotFoundError(database) from exc

        self.logger.debug("Verifying run output table", extra={"database": database, "table": table})
        try:
            deadline.check("verify table")
            self._conn.exec(f"DESCRIBE TABLE {table_ref(database, table)}", timeout=deadline.remaining())
        except ClickHouseOutputError as exc:
            self.logger.error(
                "Run output table does not exist: %s", exc, extra={"database": database, "table": table}
            )
            raise TableNotFoundError(database, table) from exc

    def stop(self) -> None:
        """Stop flushing, ship what is still buffered and close the connection.

        Calling it again is a no-op. The connection is closed and the state
        reaches ``STOPPED`` even when the final flush blows up.

        Raises:
            StopError: the final flush, closing the connection or flushing the
                logs failed. The output is stopped regardless.
        """
        with self._state_lock:
            if self._stopping:
                return
            self._stopping = True
            was_started = self.state in (OutputState.STARTED, OutputState.RUNNING)
            flusher = self._flusher

        self.logger.debug("Stopping")
        errors: list[BaseException] = []
        try:
            if flusher is not None:
                flusher.stop()
            self._buffer.close()
            if was_started:
                self.flush()
            else:
                self._drop_leftovers()
        except Exception as exc:
            self.logger.exception("Final flush failed")
            errors.append(exc)
        finally:
            try:
                self._conn.close()
            except Exception as exc:
                self.logger.error("Could not close ClickHouse connection: %s", exc)
                errors.append(exc)
            self.state = OutputState.STOPPED

        self.logger.debug(
            "Stopped (sent=%d dropped=%d failed_cycles=%d)",
            self.samples_sent,
            self.samples_dropped,
            self.failed_cycles,
        )

        try:
            flush_logger(self.logger)
        except (OSError, ValueError) as exc:
            errors.append(exc)

        if errors:
            raise StopError(errors)

    def _drop_leftovers(self) -> None:
        leftover = self._buffer.drain()
        if leftover:
            self._record(dropped=len(leftover))
            self.logger.warning(
                "Output was never started, dropping %d buffered sample(s)", len(leftover)
            )

    # Samples -----------------------------------------------------------------

    def _record(self, *, sent: int = 0, dropped: int = 0, failed: int = 0) -> None:
        with self._stats_lock:
            self.samples_sent += sent
            self.samples_dropped += dropped
            self.failed_cycles += failed

    def add_metric_samples(self, samples: Iterable[Sample]) -> None:
        """Buffer samples produced by the host. Safe to call from any thread."""
        batch = list(samples)
        if not batch:
            return
        if not self._buffer.add_samples(batch):
            self._record(dropped=len(batch))
            self.logger.warning("Output is stopped, dropping %d sample(s)", len(batch))

    def buffered(self) -> int:
        return len(self._buffer)

    def flush(self) -> BatchError | None:
        """Run one flush cycle.

        Returns the error that aborted the cycle, or ``None``. Batch errors
        are logged here and never raised, so the next cycle runs normally.
        Anything else still counts the samples as dropped and propagates.
        """
        with self._flush_lock:
            samples = self._buffer.drain()
            if not samples:
                return None
            try:
                self._emit(samples)
            except BatchError as exc:
                self._record(dropped=len(samples), failed=1)
                self.logger.error(
                    "Flush cycle failed, dropping %d sample(s): %s", len(samples), exc
                )
                return exc
            except Exception:
                self._record(dropped=len(samples), failed=1)
                raise
            self._record(sent=len(samples))
            return None

    def _emit(self, samples: list[Sample]) -> None:
        started = time.monotonic()
        deadline = Deadline(self.config.push_interval)
        self.logger.debug("Emitting samples", extra={"count": len(samples)})

        batch = prepare_batch(self._conn, self.database, self.table, self.logger, deadline)
        for index, sample in enumerate(samples):
            row = OutputRow.from_sample(
                sample,
                account_id=self.config.account_id,
                run_id=self.config.run_id,
                region=self.config.region,
            )
            try:
                batch.append(row)
            except BatchError:
                self.logger.warning(
                    "Abandoning batch after %d of %d row(s)", index, len(samples)
                )
                raise
        batch.send()

        self.logger.debug(
            "Emitted samples",
            extra={"count": len(samples), "duration": time.monotonic() - started},
        )
