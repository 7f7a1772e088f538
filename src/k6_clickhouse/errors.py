"""Exceptions raised by the ClickHouse output."""

from __future__ import annotations

from typing import Sequence


class ClickHouseOutputError(Exception):
    """Base class for every error raised by the output."""


# Construction time -----------------------------------------------------------

class ConfigError(ClickHouseOutputError):
    """The effective configuration could not be built."""


class ConfigParseError(ConfigError):
    """The JSON config document is malformed."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"error unmarshalling JSON config: {reason}")
        self.reason = reason


class EnvVarParseError(ConfigError):
    """An environment variable holds a value that cannot be parsed.

    Args:
        name: Name of the offending variable.
        cause: Why the value was rejected.
    """

    def __init__(self, name: str, cause: str) -> None:
        super().__init__(f"error parsing environment variable '{name}': {cause}")
        self.name = name
        self.cause = cause


class DsnParseError(ConfigError):
    """The destination DSN is malformed."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"error parsing DSN: {reason}")
        self.reason = reason


class ExtensionInitError(ClickHouseOutputError):
    """The host could not construct the output."""


# Driver ----------------------------------------------------------------------

class DriverError(ClickHouseOutputError):
    """A ClickHouse client call failed."""


# Start time ------------------------------------------------------------------

class LifecycleError(ClickHouseOutputError):
    """A lifecycle hook was called in the wrong state."""


class VerificationError(ClickHouseOutputError):
    """The destination did not pass start-up verification."""


class DatabaseNotFoundError(VerificationError):
    def __init__(self, database: str) -> None:
        super().__init__(f"could not verify provided database '{database}'")
        self.database = database


class TableNotFoundError(VerificationError):
    def __init__(self, database: str, table: str) -> None:
        super().__init__(f"could not verify run output table '{database}.{table}'")
        self.database = database
        self.table = table


class FlusherError(ClickHouseOutputError):
    """The periodic flusher could not be created."""


# Flush cycle -----------------------------------------------------------------

class DeadlineExceededError(ClickHouseOutputError, TimeoutError):
    """A bounded operation ran past its deadline."""


class BatchError(ClickHouseOutputError):
    """A flush cycle failed; its rows are discarded."""

    default_message = "batch error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)


class BatchPrepareError(BatchError):
    default_message = "error preparing batch insert query"


class BatchAppendError(BatchError):
    default_message = "error appending row to batch"


class BatchSendError(BatchError):
    default_message = "error sending batch"


class BatchStateError(BatchError):
    default_message = "batch is not prepared"


# Shutdown --------------------------------------------------------------------

class StopError(ClickHouseOutputError):
    """Shutdown completed, but some of its steps failed.

    Args:
        errors: The failures, in the order they happened.
    """

    def __init__(self, errors: Sequence[BaseException]) -> None:
        details = "; ".join(str(err) for err in errors)
        super().__init__(f"errors while stopping ClickHouse output: {details}")
        self.errors = list(errors)
