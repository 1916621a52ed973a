"""Application configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv


def _load_dotenv_safe(dotenv_path: str | None = None, *, override: bool = False) -> None:
    """Load dotenv using UTF-8-SIG so BOM-prefixed files don't break first key parsing."""
    try:
        load_dotenv(dotenv_path=dotenv_path, override=override, encoding="utf-8-sig")
    except TypeError:
        # Older python-dotenv versions may not expose the `encoding` argument.
        load_dotenv(dotenv_path=dotenv_path, override=override)


# Load base environment first, then optional per-deployment override env file.
_load_dotenv_safe()
_QUOTA_ENV_FILE = os.getenv("QUOTA_ENV_FILE", "").strip()
if _QUOTA_ENV_FILE:
    _quota_env_path = Path(_QUOTA_ENV_FILE).expanduser()
    if not _quota_env_path.is_absolute():
        _quota_env_path = (Path.cwd() / _quota_env_path).resolve()
    if not _quota_env_path.exists():
        raise FileNotFoundError(f"QUOTA_ENV_FILE does not exist: {_quota_env_path}")
    if not _quota_env_path.is_file():
        raise IsADirectoryError(f"QUOTA_ENV_FILE is not a file: {_quota_env_path}")
    try:
        _load_dotenv_safe(str(_quota_env_path), override=True)
    except (OSError, UnicodeError, ValueError) as exc:
        raise RuntimeError(f"Failed to load QUOTA_ENV_FILE '{_quota_env_path}': {exc}") from exc


# Identifiers and credentials. Emptiness is checked per invocation, not at import.
CF_ACCOUNT_ID = os.getenv("CF_ACCOUNT_ID", "").strip()
CF_API_TOKEN = os.getenv("CF_API_TOKEN", "").strip()
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID", "").strip()

CF_API_BASE = os.getenv("CF_API_BASE", "https://api.cloudflare.com/client/v4").strip().rstrip("/")

# Raw threshold values; parsed by quota.thresholds once per invocation.
QUOTA_BYTES = os.getenv("QUOTA_BYTES", "").strip()
REENABLE_THRESHOLD = os.getenv("REENABLE_THRESHOLD", "").strip()
CLASS_A_QUOTA = os.getenv("CLASS_A_QUOTA", "").strip()
CLASS_A_REENABLE_THRESHOLD = os.getenv("CLASS_A_REENABLE_THRESHOLD", "").strip()
CLASS_B_QUOTA = os.getenv("CLASS_B_QUOTA", "").strip()
CLASS_B_REENABLE_THRESHOLD = os.getenv("CLASS_B_REENABLE_THRESHOLD", "").strip()

CLASS_A_DEFAULT_QUOTA = 1_000_000
CLASS_B_DEFAULT_QUOTA = 10_000_000

STATE_KEY = os.getenv("STATE_KEY", "quota-controller").strip() or "quota-controller"
STATE_FILE = os.getenv("STATE_FILE", os.path.join("data", "quota_state.json"))
STATE_LOCK_TIMEOUT_SECONDS = max(0.05, float(os.getenv("STATE_LOCK_TIMEOUT_SECONDS", "2.0")))

SCAN_INTERVAL = max(1, int(os.getenv("SCAN_INTERVAL", "300")))

HTTP_TIMEOUT_SECONDS = max(1.0, float(os.getenv("HTTP_TIMEOUT_SECONDS", "15")))
HTTP_CONNECTOR_LIMIT = max(1, int(os.getenv("HTTP_CONNECTOR_LIMIT", "10")))
HTTP_RETRY_ATTEMPTS = max(1, int(os.getenv("HTTP_RETRY_ATTEMPTS", "3")))
HTTP_BACKOFF_BASE_SECONDS = max(0.05, float(os.getenv("HTTP_BACKOFF_BASE_SECONDS", "0.5")))
HTTP_BACKOFF_MAX_SECONDS = max(0.05, float(os.getenv("HTTP_BACKOFF_MAX_SECONDS", "8.0")))
HTTP_JITTER_SECONDS = max(0.0, float(os.getenv("HTTP_JITTER_SECONDS", "0.25")))
HTTP_RATE_LIMIT_DELAY_SECONDS = max(0.0, float(os.getenv("HTTP_RATE_LIMIT_DELAY_SECONDS", "2.0")))

WEBHOOK_HOST = os.getenv("WEBHOOK_HOST", "127.0.0.1")
WEBHOOK_PORT = int(os.getenv("WEBHOOK_PORT", "8081"))
WEBHOOK_PATH = os.getenv("WEBHOOK_PATH", "/")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", "logs")
APP_LOG_FILE = os.path.join(LOG_DIR, "quota_controller.log")
