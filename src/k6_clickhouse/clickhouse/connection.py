"""ClickHouse connection over the native protocol.

The output only needs a handful of operations from the database: run a
statement, prepare a batch insert into one table, and close. They are
described by :class:`Connection` so the flush path can be exercised without a
server; :class:`ClickHouseConnection` implements them with clickhouse-driver.
"""

from __future__ import annotations

import math
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping, Protocol, Sequence

from clickhouse_driver import Client
from clickhouse_driver import errors as ch_errors

from ..config import ClientOptions
from ..errors import DriverError

# column kinds that accept explicit values in an INSERT
_INSERTABLE_DEFAULT_KINDS = ("", "DEFAULT")
_DRIVER_ERRORS = (ch_errors.Error, OSError, EOFError)


class DriverBatch(Protocol):
    """A batch insert prepared against one table."""

    @property
    def rows(self) -> int: ...

    def append(self, row: Mapping[str, Any]) -> None: ...

    def send(self, *, timeout: float | None = None) -> None: ...


class Connection(Protocol):
    """The operations the output issues against the destination."""

    def exec(self, query: str, *, timeout: float | None = None) -> None: ...

    def prepare_batch(
        self,
        database: str,
        table: str,
        columns: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> DriverBatch: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class Column:
    name: str
    type: str
    default_kind: str = ""

    @property
    def insertable(self) -> bool:
        return self.default_kind in _INSERTABLE_DEFAULT_KINDS


def quote_identifier(name: str) -> str:
    return "`" + name.replace("\\", "\\\\").replace("`", "\\`") + "`"


def table_ref(database: str, table: str) -> str:
    return f"{quote_identifier(database)}.{quote_identifier(table)}"


def _unwrap_type(type_name: str) -> tuple[str, bool]:
    nullable = False
    while True:
        for wrapper in ("Nullable(", "LowCardinality("):
            if type_name.startswith(wrapper) and type_name.endswith(")"):
                nullable = nullable or wrapper == "Nullable("
                type_name = type_name[len(wrapper):-1]
                break
        else:
            return type_name, nullable


def check_value(column: Column, value: Any) -> None:
    """Raise :class:`TypeError` if *value* cannot be stored in *column*."""
    type_name, nullable = _unwrap_type(column.type)
    if value is None:
        if nullable:
            return
        raise TypeError(f"column {column.name!r} ({column.type}) is not nullable")

    if type_name.startswith(("String", "FixedString", "Enum", "UUID")):
        ok = isinstance(value, str)
    elif type_name.startswith(("Float", "Decimal")):
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif type_name.startswith(("Int", "UInt")):
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif type_name.startswith("DateTime"):
        ok = isinstance(value, datetime)
    elif type_name.startswith("Date"):
        ok = isinstance(value, date)
    elif type_name.startswith("Map("):
        ok = isinstance(value, MappingABC)
    else:
        ok = True
    if not ok:
        raise TypeError(
            f"cannot store {type(value).__name__} in column {column.name!r} ({column.type})"
        )


def _query_settings(timeout: float | None) -> dict[str, Any] | None:
    if timeout is None:
        return None
    return {"max_execution_time": max(1, math.ceil(timeout))}


class ClickHouseBatch:
    """Rows waiting to be inserted into one table."""

    def __init__(self, client: Client, database: str, table: str, columns: Sequence[Column]) -> None:
        self._client = client
        self._columns = list(columns)
        names = ", ".join(quote_identifier(c.name) for c in self._columns)
        self._query = f"INSERT INTO {table_ref(database, table)} ({names}) VALUES"
        self._rows: list[tuple[Any, ...]] = []

    @property
    def rows(self) -> int:
        return len(self._rows)

    @property
    def columns(self) -> list[str]:
        return [c.name for c in self._columns]

    def append(self, row: Mapping[str, Any]) -> None:
        values = []
        for column in self._columns:
            if column.name not in row:
                raise KeyError(f"missing key {column.name!r} for column of the destination table")
            value = row[column.name]
            check_value(column, value)
            if isinstance(value, MappingABC):
                value = dict(value)
            values.append(value)
        self._rows.append(tuple(values))

    def send(self, *, timeout: float | None = None) -> None:
        try:
            self._client.execute(
                self._query,
                self._rows,
                types_check=True,
                settings=_query_settings(timeout),
            )
        except _DRIVER_ERRORS as exc:
            raise DriverError(f"insert failed: {exc}") from exc


class ClickHouseConnection:
    """A single long-lived native connection to ClickHouse."""

    def __init__(self, options: ClientOptions, *, client: Client | None = None) -> None:
        self.options = options
        self._client = client if client is not None else self._build_client(options)
        self._closed = False

    @staticmethod
    def _build_client(options: ClientOptions) -> Client:
        kwargs: dict[str, Any] = {
            "host": options.host,
            "port": options.port,
            "database": options.database,
            "user": options.username,
            "password": options.password,
            "secure": options.secure,
            "verify": not options.skip_verify,
            "compression": options.compression,
            "client_name": "k6-clickhouse-output",
        }
        if len(options.hosts) > 1:
            kwargs["alt_hosts"] = ",".join(f"{host}:{port}" for host, port in options.hosts[1:])
        if options.dial_timeout is not None:
            kwargs["connect_timeout"] = options.dial_timeout
        if options.read_timeout is not None:
            kwargs["send_receive_timeout"] = options.read_timeout
        if options.settings:
            kwargs["settings"] = dict(options.settings)
        return Client(**kwargs)

    @property
    def closed(self) -> bool:
        return self._closed

    def exec(self, query: str, *, timeout: float | None = None) -> None:
        try:
            self._client.execute(query, settings=_query_settings(timeout))
        except _DRIVER_ERRORS as exc:
            raise DriverError(f"query failed: {exc}") from exc

    def describe(self, database: str, table: str, *, timeout: float | None = None) -> list[Column]:
        try:
            result = self._client.execute(
                f"DESCRIBE TABLE {table_ref(database, table)}",
                settings=_query_settings(timeout),
            )
        except _DRIVER_ERRORS as exc:
            raise DriverError(f"describe failed: {exc}") from exc
        return [
            Column(name=row[0], type=row[1], default_kind=row[2] if len(row) > 2 else "")
            for row in result
        ]

    def prepare_batch(
        self,
        database: str,
        table: str,
        columns: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> ClickHouseBatch:
        provided = set(columns)
        insert_columns = [
            col
            for col in self.describe(database, table, timeout=timeout)
            if col.insertable and (col.name in provided or col.default_kind == "")
        ]
        if not insert_columns:
            raise DriverError(f"table {database}.{table} has no insertable columns")
        return ClickHouseBatch(self._client, database, table, insert_columns)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._client.disconnect()
        except _DRIVER_ERRORS as exc:
            raise DriverError(f"could not close ClickHouse connection: {exc}") from exc


def open_connection(options: ClientOptions) -> ClickHouseConnection:
    """Open the connection described by *options*."""
    try:
        return ClickHouseConnection(options)
    except _DRIVER_ERRORS as exc:
        raise DriverError(f"could not connect to ClickHouse: {exc}") from exc
