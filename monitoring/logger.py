"""
Thread-safe structured event log for the live session and backtests.

Responsibilities:
- Write order, fill, decision and risk events as `event {json}` lines.
- Console and rotating file handlers, configurable level.
- Keep a bounded in-memory cache of recent events; the live session reads
  it back as its order log.
- Redact credential fields before anything is written.

Usage:
    from monitoring import logger as event_log

    event_log.configure(level="INFO", log_file="logs/trader.log")
    event_log.log_event("session.start", {"symbol": "BTCUSDT"})
    event_log.log_trade({"order_id": "42", "side": "BUY", "qty": 0.001, "price": 60000})
"""
from __future__ import annotations

import json
import logging
import logging.handlers
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Redacted from payloads (case-insensitive)
_DEFAULT_SENSITIVE_KEYS = frozenset({"api_key", "api_secret", "secret", "password", "token"})

_DEFAULT_RECENT_CACHE_SIZE = 500

Level = Union[str, int]


def _level(level: Level) -> int:
    return level if isinstance(level, int) else getattr(logging, str(level).upper(), logging.INFO)


def _as_kv_str(event: str, payload: Optional[Dict[str, Any]]) -> str:
    """Compact `event {json}` line."""
    if not payload:
        return event
    try:
        return f"{event} {json.dumps(payload, separators=(',', ':'), default=str)}"
    except (TypeError, ValueError):
        return f"{event} {payload}"


def scrub_secrets(
    payload: Optional[Dict[str, Any]],
    sensitive_keys: Optional[Iterable[str]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Return a shallow copy of payload with sensitive fields redacted.

    Args:
        payload: structured payload dictionary (may be None)
        sensitive_keys: optional iterable of keys to redact (case-insensitive)
    """
    if payload is None:
        return None
    keys = {k.lower() for k in (sensitive_keys or _DEFAULT_SENSITIVE_KEYS)}
    return {k: ("<REDACTED>" if k.lower() in keys else v) for k, v in payload.items()}


def setup_logging(level: Level = "INFO") -> None:
    """Configure the root logger used by module loggers."""
    logging.basicConfig(level=_level(level), format=LOG_FORMAT, force=True)


class LoggerManager:
    """
    Thread-safe structured event logger.

    Provides configure(), log_event(), log_trade(), log_error() and
    get_recent(). Every logged event is also kept in a bounded recent cache.
    """

    def __init__(self, name: str = "trader.events", recent_size: int = _DEFAULT_RECENT_CACHE_SIZE):
        self._name = name
        self._lock = threading.RLock()
        self._logger = logging.getLogger(self._name)
        self._logger.setLevel(logging.INFO)
        self._recent: deque = deque(maxlen=recent_size)

    def configure(
        self,
        level: Level = "INFO",
        log_file: Optional[str] = None,
        max_bytes: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        console: bool = False,
    ) -> None:
        """
        Configure level and handlers (thread-safe, replaces previous handlers).

        Events propagate to the root logger unless a dedicated console
        handler is requested.

        Args:
            level: logging level name or int
            log_file: optional path to rotating log file
            max_bytes: rotation size in bytes
            backup_count: number of rotated files to keep
            console: attach an own console handler and stop propagation
        """
        with self._lock:
            lvl = _level(level)
            self._logger.setLevel(lvl)

            for h in list(self._logger.handlers):
                self._logger.removeHandler(h)
                h.close()

            formatter = logging.Formatter(LOG_FORMAT)
            if console:
                ch = logging.StreamHandler()
                ch.setLevel(lvl)
                ch.setFormatter(formatter)
                self._logger.addHandler(ch)
            self._logger.propagate = not console

            if log_file:
                Path(log_file).parent.mkdir(parents=True, exist_ok=True)
                fh = logging.handlers.RotatingFileHandler(
                    log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
                )
                fh.setLevel(lvl)
                fh.setFormatter(formatter)
                self._logger.addHandler(fh)

    def _record_recent(self, kind: str, event: str, payload: Optional[Dict[str, Any]]) -> None:
        with self._lock:
            self._recent.appendleft({"ts": int(time.time() * 1000), "kind": kind, "event": event, "payload": payload})

    def get_recent(self, limit: Optional[int] = None, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        """Newest-first snapshot of recent events, optionally of one kind."""
        with self._lock:
            items = [e for e in self._recent if kind is None or e["kind"] == kind]
        return items if limit is None else items[:limit]

    def clear_recent(self) -> None:
        with self._lock:
            self._recent.clear()

    def log_event(self, event: str, payload: Optional[Dict[str, Any]] = None, level: Level = "INFO") -> None:
        """
        Log a system event with structured payload.

        Args:
            event: short event name, e.g. "order.submitted"
            payload: optional structured payload (will be scrubbed)
            level: log level
        """
        payload_safe = scrub_secrets(payload)
        self._logger.log(_level(level), _as_kv_str(event, payload_safe))
        self._record_recent("event", event, payload_safe)

    def log_trade(self, trade: Dict[str, Any]) -> None:
        """Log an order fill. Expected keys: order_id, symbol, side, qty, price."""
        trade_safe = scrub_secrets(trade)
        self._logger.info(_as_kv_str("trade", trade_safe))
        self._record_recent("trade", "trade", trade_safe)

    def log_error(
        self,
        event: str,
        message: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        exc_info: Any = None,
    ) -> None:
        payload_safe = scrub_secrets(payload)
        full_msg = f"{event} {message or ''}".strip()
        self._logger.error(_as_kv_str(full_msg, payload_safe), exc_info=exc_info)
        self._record_recent("error", event, {"message": message, "payload": payload_safe})

    def get_logger(self) -> logging.Logger:
        return self._logger


# Module-level default manager
_default_manager = LoggerManager()


def get_manager() -> LoggerManager:
    return _default_manager


def configure(level: Level = "INFO", log_file: Optional[str] = None, **kwargs) -> None:
    _default_manager.configure(level=level, log_file=log_file, **kwargs)


def log_event(event: str, payload: Optional[Dict[str, Any]] = None, level: Level = "INFO") -> None:
    _default_manager.log_event(event, payload, level)


def log_trade(trade: Dict[str, Any]) -> None:
    _default_manager.log_trade(trade)


def log_error(event: str, message: Optional[str] = None, payload: Optional[Dict[str, Any]] = None, exc_info: Any = None) -> None:
    _default_manager.log_error(event, message, payload, exc_info)
