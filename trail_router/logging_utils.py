from __future__ import annotations

import logging
import math
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "trail_router"
LOG_FILENAME = "trail_router.log.jsonl"


def _parse_level(name: str) -> int:
    level = logging.getLevelName(str(name or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _resolve_log_dir(configured_out_dir: str) -> Path | None:
    """First writable of ``<out_dir>/logs``, ``./out/logs`` and the temp dir."""
    for log_dir in (
        Path(configured_out_dir) / "logs",
        Path.cwd() / "out" / "logs",
        Path(gettempdir()) / "trail-router" / "logs",
    ):
        probe = log_dir / ".writetest"
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            probe.touch(exist_ok=True)
            probe.unlink(missing_ok=True)
        except OSError:
            continue
        return log_dir
    return None


def _json_safe(value: Any) -> Any:
    # inf/nan are not valid JSON; unreached costs and snap distances are inf
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(item) for item in value]
    return value


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    if getattr(logger, "_configured", False):
        return logger

    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    log_dir = _resolve_log_dir(settings.out_dir)
    if log_dir is not None:
        try:
            handlers.append(logging.FileHandler(log_dir / LOG_FILENAME, encoding="utf-8"))
        except OSError:
            pass

    formatter = jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(message)s")
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger._configured = True  # type: ignore[attr-defined]
    return logger


LOGGER: logging.Logger | None = None


def _emit(level: int, event: str, fields: dict[str, Any]) -> None:
    global LOGGER
    if LOGGER is None:
        LOGGER = get_logger()
    if not LOGGER.isEnabledFor(level):
        return
    LOGGER.log(level, event, extra={"event": event, **_json_safe(fields)})


def log_event(event: str, **fields: Any) -> None:
    _emit(logging.INFO, event, fields)


def log_debug(event: str, **fields: Any) -> None:
    _emit(logging.DEBUG, event, fields)
