"""Static configuration for mangalink.

All user-editable settings (storage, linking, notifications, logging) live in
a single JSON file for quick edits without touching Python. Secrets stay in
the environment (.env).
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

CONFIG_PATH = os.getenv("MANGALINK_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Storage backend: "sqlite" persists to DB_PATH, "memory" lives for one process.
# STORAGE_TIMEOUT_SECONDS bounds how long a call may wait on a locked database.
_storage = _CONFIG.get("storage", {})
STORAGE_BACKEND = _storage.get("backend", "sqlite")
DB_PATH = _resolve_path(_storage.get("db_path", "mangalink.db"))
STORAGE_TIMEOUT_SECONDS = float(_storage.get("timeout_seconds", 5))

# Page where users type the code shown by /start.
_linking = _CONFIG.get("linking", {})
CONFIRM_URL = _linking.get("confirm_url")

# Upper bound for a single outbound send.
_notifications = _CONFIG.get("notifications", {})
SEND_TIMEOUT_SECONDS = float(_notifications.get("send_timeout_seconds", 10))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
