"""
Configuration for vc-status.

Settings come from VC_STATUS_* environment variables. Before the module-level
constants are read, ~/.vc-status/vc-status.env is loaded so users can keep
their OAuth client credentials out of their shell profile. Variables already
present in the environment take precedence over the file.
"""

import logging
import os
import sys
from pathlib import Path

logger = logging.getLogger("vcstatus")

CONFIG_DIR = Path(os.getenv("VC_STATUS_HOME", str(Path.home() / ".vc-status")))
CONFIG_FILE = CONFIG_DIR / "vc-status.env"


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a KEY=VALUE env file.

    Supports comments, blank lines, and single- or multi-line quoted values.
    """
    values: dict[str, str] = {}
    with open(path, "r") as f:
        lines = f.readlines()

    i = 0
    while i < len(lines):
        line = lines[i].strip()

        if not line or line.startswith("#") or "=" not in line:
            i += 1
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()

        if value and value[0] in ('"', "'"):
            quote_char = value[0]
            if len(value) > 1 and value[-1] == quote_char:
                value = value[1:-1]
            else:
                value_parts = [value[1:]]
                i += 1
                while i < len(lines):
                    next_line = lines[i].rstrip("\n")
                    if next_line.endswith(quote_char):
                        value_parts.append(next_line[:-1])
                        break
                    value_parts.append(next_line)
                    i += 1
                value = "\n".join(value_parts)

        if key:
            values[key] = value
        i += 1

    return values


def load_env_file(path: Path = CONFIG_FILE) -> int:
    """Load an env file into os.environ without overriding existing values.

    Returns:
        Number of variables set.
    """
    if not path.exists():
        return 0
    try:
        values = parse_env_file(path)
    except OSError as e:
        logger.warning(f"Could not read config file {path}: {e}")
        return 0

    count = 0
    for key, value in values.items():
        if key not in os.environ:
            os.environ[key] = value
            count += 1
    return count


def env_bool(name: str, default: bool = False) -> bool:
    """Read a boolean environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def env_float(name: str, default: float) -> float:
    """Read a float environment variable, falling back on bad input."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {value!r}, using {default}")
        return default


load_env_file()

# OAuth application
CLIENT_ID = os.getenv("VC_STATUS_CLIENT_ID", "")
CLIENT_SECRET = os.getenv("VC_STATUS_CLIENT_SECRET", "")
REDIRECT_URI = os.getenv("VC_STATUS_REDIRECT_URI", "http://localhost")
TOKEN_URL = os.getenv("VC_STATUS_TOKEN_URL", "https://discord.com/api/oauth2/token")
OAUTH_SCOPES = ["rpc", "identify"]

# Local IPC
IPC_PATH = os.getenv("VC_STATUS_IPC_PATH", "")
COMMAND_TIMEOUT = env_float("VC_STATUS_COMMAND_TIMEOUT", 10.0)
EVENT_READ_TIMEOUT = env_float("VC_STATUS_EVENT_READ_TIMEOUT", 0.0)

# Token endpoint
HTTP_TIMEOUT = env_float("VC_STATUS_HTTP_TIMEOUT", 30.0)
TOKEN_RETRY_ATTEMPTS = int(env_float("VC_STATUS_TOKEN_RETRY_ATTEMPTS", 3))

# Credential storage: "keyring" or "plaintext"
CREDENTIAL_STORE = os.getenv("VC_STATUS_CREDENTIAL_STORE", "keyring").lower()

DEBUG = env_bool("VC_STATUS_DEBUG", False)


def require_client_credentials() -> tuple[str, str]:
    """Return (client_id, client_secret) or raise ConfigError."""
    if not CLIENT_ID or not CLIENT_SECRET:
        raise ConfigError(
            "OAuth client is not configured. "
            f"Set VC_STATUS_CLIENT_ID and VC_STATUS_CLIENT_SECRET in {CONFIG_FILE}."
        )
    return CLIENT_ID, CLIENT_SECRET


def setup_logging(debug: bool = DEBUG) -> logging.Logger:
    """Configure the shared vcstatus logger."""
    log = logging.getLogger("vcstatus")
    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        log.addHandler(handler)
    log.setLevel(logging.DEBUG if debug else logging.INFO)
    return log
