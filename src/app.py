"""Application entry point for the mangalink bot."""

from __future__ import annotations

import argparse
import logging
import os
from collections import Counter
from logging.handlers import RotatingFileHandler
from typing import Iterable, Iterator, Optional, Union

from art import tprint
from dotenv import load_dotenv

import settings
from adapters.event_mapper import load_events
from adapters.memory_storage import MemoryStorage
from adapters.notification_formatting import PlainTextFormatter, format_confirm_result
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_transport import TelegramBotTransport
from adapters.telegram_commands import BotCommands
from client import SECRET_ENV_NAMES, load_credentials, start_bot
from core.clock import SystemClock, day_bucket
from core.config import DispatchConfig, StorageConfig
from core.coordinator import LinkingCoordinator
from core.dispatcher import NotificationDispatcher
from core.linking_codes import LinkingCodeRegistry
from core.preferences import NotificationPreferenceStore

NAME = "MANGALINK"
FONT = "tarty-1"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

Storage = Union[SQLiteStorage, MemoryStorage]


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)
    print(f"storage: {settings.STORAGE_BACKEND} | confirm page: {settings.CONFIRM_URL or '-'}")


class _SecretMaskingFormatter(logging.Formatter):
    """Masks bot secrets in messages and tracebacks alike."""

    def __init__(self, secrets: Iterable[str]) -> None:
        super().__init__(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
        # Longest first so a secret containing another is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "<redacted>")
        return message


def _secret_values(config: dict) -> list[str]:
    # Bot secrets are always masked; redact_env adds deployment-specific names.
    names = set(SECRET_ENV_NAMES) | set(config.get("redact_env", []))
    return [value for value in (os.getenv(name) for name in sorted(names)) if value]


def _log_handlers(config: dict) -> Iterator[logging.Handler]:
    if config.get("console", True):
        yield logging.StreamHandler()

    file_cfg = config.get("file", {})
    if not file_cfg.get("enabled", False):
        return
    path = file_cfg.get("path", "logs/mangalink.log")
    if not os.path.isabs(path):
        path = os.path.join(settings.PROJECT_ROOT, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    yield RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging(config: dict) -> None:
    if not config.get("enabled", False):
        return

    formatter = _SecretMaskingFormatter(_secret_values(config))
    handlers = list(_log_handlers(config))
    for handler in handlers:
        handler.setFormatter(formatter)
    if handlers:
        level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
        logging.basicConfig(level=level, handlers=handlers)


def _build_storage(config: StorageConfig) -> Storage:
    if config.backend == "sqlite":
        storage: Storage = SQLiteStorage(config.db_path, timeout_seconds=config.timeout_seconds)
    elif config.backend == "memory":
        # Only useful for trying the bot locally: codes cannot be confirmed
        # from another process.
        storage = MemoryStorage()
    else:
        raise RuntimeError("storage.backend must be 'sqlite' or 'memory'")
    storage.init_db()
    return storage


def _storage_from_settings() -> Storage:
    return _build_storage(
        StorageConfig(
            backend=settings.STORAGE_BACKEND,
            db_path=settings.DB_PATH,
            timeout_seconds=settings.STORAGE_TIMEOUT_SECONDS,
        )
    )


def _build_coordinator(storage: Storage) -> LinkingCoordinator:
    clock = SystemClock()
    registry = LinkingCodeRegistry(storage, clock=clock)
    return LinkingCoordinator(storage, registry, clock=clock)


def _run() -> None:
    _print_banner()
    logger = logging.getLogger(__name__)

    logger.info("Starting mangalink bot")
    storage = _storage_from_settings()
    logger.info("Storage backend - %s", settings.STORAGE_BACKEND)

    commands = BotCommands(
        coordinator=_build_coordinator(storage),
        preferences=NotificationPreferenceStore(storage),
        confirm_url=settings.CONFIRM_URL,
    )

    client = start_bot(load_credentials())
    commands.register(client)
    logger.info("Bot connected. Listening for commands...")
    client.run_until_disconnected()


def _confirm(code: str, account_id: str, credential: str) -> int:
    """Operator path for the website confirmation call."""
    coordinator = _build_coordinator(_storage_from_settings())
    result = coordinator.confirm_linking(code, account_id, credential)
    print(format_confirm_result(result))
    return 0 if result.ok else 1


def _dispatch(path: str) -> int:
    """Deliver a JSON Lines file of upstream events through the bot."""
    logger = logging.getLogger(__name__)
    events = load_events(path)
    if not events:
        logger.info("No events in %s", path)
        return 0

    storage = _storage_from_settings()
    client = start_bot(load_credentials())
    dispatcher = NotificationDispatcher(
        sessions=storage,
        preferences=NotificationPreferenceStore(storage),
        quota=storage,
        formatter=PlainTextFormatter(),
        transport=TelegramBotTransport(client),
        config=DispatchConfig(send_timeout_seconds=settings.SEND_TIMEOUT_SECONDS),
    )
    try:
        results = client.loop.run_until_complete(dispatcher.dispatch_batch(events))
    finally:
        client.loop.run_until_complete(client.disconnect())

    totals = Counter(outcome.status.value for outcomes in results for outcome in outcomes)
    logger.info(
        "Dispatch complete: events=%s, sent=%s, suppressed=%s, failed=%s",
        len(events),
        totals["sent"],
        totals["suppressed"],
        totals["failed"],
    )
    return 0


def _purge() -> int:
    """Lazy housekeeping for dead codes and past quota buckets."""
    logger = logging.getLogger(__name__)
    storage = _storage_from_settings()
    clock = SystemClock()
    removed_codes = LinkingCodeRegistry(storage, clock=clock).purge()
    removed_buckets = storage.purge_quota_before(day_bucket(clock.now()))
    logger.info("Purge removed %s codes and %s quota buckets", removed_codes, removed_buckets)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="mangalink")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the bot")

    confirm = subparsers.add_parser("confirm", help="Confirm a linking code for an account")
    confirm.add_argument("code")
    confirm.add_argument("account_id")
    confirm.add_argument("--credential", required=True, help="Content-service access token")

    dispatch = subparsers.add_parser("dispatch", help="Send notifications for a JSON Lines event file")
    dispatch.add_argument("path")

    subparsers.add_parser("purge", help="Remove dead linking codes and old quota counters")

    args = parser.parse_args(argv)
    load_dotenv()
    _configure_logging(settings.LOGGING or {})
    if args.command == "confirm":
        return _confirm(args.code, args.account_id, args.credential)
    if args.command == "dispatch":
        return _dispatch(args.path)
    if args.command == "purge":
        return _purge()
    _run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
