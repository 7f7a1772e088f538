"""Default values for the ClickHouse output."""

from __future__ import annotations

import logging

EXTENSION_NAME = "xk6-output-clickhouse"

# Default output table name.
DEFAULT_TABLE_NAME = "run_output"

# Default metric push interval, in seconds.
DEFAULT_PUSH_INTERVAL = 1.0

# Default log level of the extension.
DEFAULT_LOG_LEVEL = logging.INFO

# Default timeout for verifying the ClickHouse database and table, in seconds.
DEFAULT_CONNECTION_VERIFICATION_TIMEOUT = 10.0

DEFAULT_DATABASE = "default"
DEFAULT_HOST = "localhost"
DEFAULT_NATIVE_PORT = 9000
DEFAULT_SECURE_NATIVE_PORT = 9440

ENV_PREFIX = "K6_CLICKHOUSE_"
