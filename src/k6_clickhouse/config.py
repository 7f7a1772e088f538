"""Configuration loading and validation for the ClickHouse output.

Settings are merged from, lowest to highest precedence: built-in defaults,
the JSON config document handed over by the host, ``K6_CLICKHOUSE_*``
environment variables and the single CLI argument (which only sets the DSN).
A source only overrides the fields it actually sets; empty values never blank
out a lower source.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import parse_qsl, unquote, urlsplit, urlunsplit

from .constants import (
    DEFAULT_CONNECTION_VERIFICATION_TIMEOUT,
    DEFAULT_DATABASE,
    DEFAULT_HOST,
    DEFAULT_LOG_LEVEL,
    DEFAULT_NATIVE_PORT,
    DEFAULT_PUSH_INTERVAL,
    DEFAULT_SECURE_NATIVE_PORT,
    DEFAULT_TABLE_NAME,
    ENV_PREFIX,
)
from .errors import ConfigParseError, DsnParseError, EnvVarParseError


@dataclass
class ClientOptions:
    """Connection parameters derived from the DSN."""

    hosts: list[tuple[str, int]] = field(
        default_factory=lambda: [(DEFAULT_HOST, DEFAULT_NATIVE_PORT)]
    )
    username: str = "default"
    password: str = ""
    database: str = DEFAULT_DATABASE
    secure: bool = False
    skip_verify: bool = False
    compression: bool | str = False
    dial_timeout: float | None = None
    read_timeout: float | None = None
    settings: dict[str, str] = field(default_factory=dict)

    @property
    def host(self) -> str:
        return self.hosts[0][0]

    @property
    def port(self) -> int:
        return self.hosts[0][1]


@dataclass
class Config:
    """Effective configuration of the output."""

    dsn: str = ""
    table: str = DEFAULT_TABLE_NAME
    account_id: str = ""
    region: str = ""
    run_id: str = ""
    push_interval: float = DEFAULT_PUSH_INTERVAL
    log_level: int = DEFAULT_LOG_LEVEL
    verification_timeout: float = DEFAULT_CONNECTION_VERIFICATION_TIMEOUT
    client_options: ClientOptions | None = None

    @property
    def database(self) -> str:
        if self.client_options is None:
            return DEFAULT_DATABASE
        return self.client_options.database


# ---------------------------------------------------------------------------
# Value parsers
# ---------------------------------------------------------------------------

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_TOKEN = re.compile(r"(\d+\.?\d*|\.\d+)([^\d.]*)")

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "dpanic": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_COMPRESSION_CODECS = {"lz4", "lz4hc", "zstd"}


def parse_duration(value: str) -> float:
    """Parse a Go-style duration string (``"4ms"``, ``"1m30s"``) into seconds.

    Raises:
        ValueError: if *value* is not a valid duration.
    """
    orig = value
    text = value.strip()
    sign = 1.0
    if text[:1] in ("+", "-"):
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f'time: invalid duration "{orig}"')

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_TOKEN.match(text, pos)
        if match is None:
            raise ValueError(f'time: invalid duration "{orig}"')
        number, unit = match.groups()
        if not unit:
            raise ValueError(f'time: missing unit in duration "{orig}"')
        if unit not in _DURATION_UNITS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{orig}"')
        total += float(number) * _DURATION_UNITS[unit]
        pos = match.end()
    return sign * total


def parse_log_level(value: str) -> int:
    """Map a level name to a :mod:`logging` level.

    Raises:
        ValueError: if the level name is unknown.
    """
    try:
        return _LOG_LEVELS[value.strip().lower()]
    except KeyError:
        raise ValueError(f'unrecognized level: "{value}"') from None


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f'invalid boolean "{value}"')


# ---------------------------------------------------------------------------
# DSN
# ---------------------------------------------------------------------------

def _parse_host(entry: str, default_port: int) -> tuple[str, int]:
    if entry.startswith("["):
        host, sep, rest = entry[1:].partition("]")
        if not sep or (rest and not rest.startswith(":")):
            raise DsnParseError(f"invalid host {entry!r}")
        port_text = rest[1:]
    else:
        host, _, port_text = entry.partition(":")
    if not host:
        raise DsnParseError(f"missing host in {entry!r}")
    if not port_text:
        return host, default_port
    if not port_text.isdigit() or not 0 < int(port_text) < 65536:
        raise DsnParseError(f"invalid port {port_text!r}")
    return host, int(port_text)


def parse_dsn(dsn: str) -> ClientOptions:
    """Derive client options from a DSN.

    ``clickhouse://[user[:password]@]host[:port][,host[:port]...][/database][?param=value...]``
    """
    try:
        parts = urlsplit(dsn.strip())
    except ValueError as exc:
        raise DsnParseError(str(exc)) from exc

    if parts.scheme not in ("clickhouse", "tcp"):
        raise DsnParseError(f"unsupported scheme {parts.scheme!r}")

    userinfo, _, hostlist = parts.netloc.rpartition("@")
    options = ClientOptions()
    if userinfo:
        username, _, password = userinfo.partition(":")
        options.username = unquote(username) or options.username
        options.password = unquote(password)

    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        try:
            if key == "secure":
                options.secure = _parse_bool(value)
            elif key == "skip_verify":
                options.skip_verify = _parse_bool(value)
            elif key == "compress":
                if value.lower() in _COMPRESSION_CODECS:
                    options.compression = value.lower()
                else:
                    options.compression = _parse_bool(value)
            elif key == "dial_timeout":
                options.dial_timeout = parse_duration(value)
            elif key == "read_timeout":
                options.read_timeout = parse_duration(value)
            else:
                options.settings[key] = value
        except ValueError as exc:
            raise DsnParseError(f"invalid value for {key!r}: {exc}") from exc

    default_port = DEFAULT_SECURE_NATIVE_PORT if options.secure else DEFAULT_NATIVE_PORT
    if not hostlist:
        raise DsnParseError("missing host")
    options.hosts = [_parse_host(entry, default_port) for entry in hostlist.split(",")]

    database = unquote(parts.path.lstrip("/"))
    if "/" in database:
        raise DsnParseError(f"invalid database name {database!r}")
    if database:
        options.database = database

    return options


def redact_dsn(dsn: str) -> str:
    """Return *dsn* with its password masked."""
    try:
        parts = urlsplit(dsn)
    except ValueError:
        return dsn
    userinfo, sep, hostlist = parts.netloc.rpartition("@")
    if not sep or ":" not in userinfo:
        return dsn
    username = userinfo.partition(":")[0]
    return urlunsplit(parts._replace(netloc=f"{username}:xxxxx@{hostlist}"))


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

_STRING_FIELDS = {
    "dsn": "dsn",
    "table": "table",
    "accountId": "account_id",
    "region": "region",
    "runId": "run_id",
}

_ENV_STRING_FIELDS = {
    f"{ENV_PREFIX}DSN": "dsn",
    f"{ENV_PREFIX}TABLE": "table",
    f"{ENV_PREFIX}ACCOUNT_ID": "account_id",
    f"{ENV_PREFIX}REGION": "region",
    f"{ENV_PREFIX}RUN_ID": "run_id",
}
ENV_PUSH_INTERVAL = f"{ENV_PREFIX}PUSH_INTERVAL"
ENV_LOG_LEVEL = f"{ENV_PREFIX}LOG_LEVEL"


def _json_overrides(raw: bytes | str) -> dict[str, Any]:
    """Decode the JSON config document into the fields it explicitly sets."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ConfigParseError(str(exc)) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigParseError(f"expected a JSON object, got {type(data).__name__}")

    overrides: dict[str, Any] = {}
    for key, attr in _STRING_FIELDS.items():
        value = data.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise ConfigParseError(f"field {key!r} must be a string")
        if value:
            overrides[attr] = value

    interval = data.get("pushInterval")
    if isinstance(interval, bool):
        raise ConfigParseError("field 'pushInterval' must be a duration")
    if isinstance(interval, str):
        try:
            overrides["push_interval"] = parse_duration(interval)
        except ValueError as exc:
            raise ConfigParseError(f"field 'pushInterval': {exc}") from exc
    elif isinstance(interval, (int, float)):
        # plain numbers are milliseconds
        overrides["push_interval"] = interval / 1000.0
    elif interval is not None:
        raise ConfigParseError("field 'pushInterval' must be a duration")
    if "push_interval" in overrides and overrides["push_interval"] <= 0:
        raise ConfigParseError("field 'pushInterval' must be positive")

    level = data.get("logLevel")
    if level is not None:
        if not isinstance(level, str):
            raise ConfigParseError("field 'logLevel' must be a string")
        try:
            overrides["log_level"] = parse_log_level(level)
        except ValueError as exc:
            raise ConfigParseError(f"field 'logLevel': {exc}") from exc

    return overrides


def _env_overrides(environment: Mapping[str, str]) -> dict[str, Any]:
    """Collect the fields set by ``K6_CLICKHOUSE_*`` variables."""
    overrides: dict[str, Any] = {}
    for name, attr in _ENV_STRING_FIELDS.items():
        value = environment.get(name)
        if value:
            overrides[attr] = value

    raw_interval = environment.get(ENV_PUSH_INTERVAL)
    if raw_interval:
        try:
            interval = parse_duration(raw_interval)
        except ValueError as exc:
            raise EnvVarParseError(ENV_PUSH_INTERVAL, str(exc)) from exc
        if interval <= 0:
            raise EnvVarParseError(ENV_PUSH_INTERVAL, f'duration "{raw_interval}" must be positive')
        overrides["push_interval"] = interval

    raw_level = environment.get(ENV_LOG_LEVEL)
    if raw_level:
        try:
            overrides["log_level"] = parse_log_level(raw_level)
        except ValueError as exc:
            raise EnvVarParseError(ENV_LOG_LEVEL, str(exc)) from exc

    return overrides


def _apply(cfg: Config, overrides: Mapping[str, Any]) -> Config:
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


def resolve(
    json_config: bytes | str | None = None,
    environment: Mapping[str, str] | None = None,
    config_argument: str = "",
) -> Config:
    """Build the effective configuration.

    Raises:
        ConfigParseError: the JSON document is malformed.
        EnvVarParseError: a duration or level variable cannot be parsed.
        DsnParseError: the resulting DSN is malformed.
    """
    cfg = Config()

    if json_config:
        _apply(cfg, _json_overrides(json_config))

    if environment:
        _apply(cfg, _env_overrides(environment))

    if config_argument:
        cfg.dsn = config_argument

    if cfg.dsn:
        cfg.client_options = parse_dsn(cfg.dsn)

    return cfg
