import dataclasses
import json
import logging
import logging.config
import time
from collections.abc import Mapping
from dataclasses import asdict
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from logging import Logger
from pathlib import Path
from typing import Any, Optional, cast
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_DEBUG_ENABLED = False
_DEBUG_MODULES: set[str] = set()
_CONFIGURED = False
_RUN_ID: str | None = None
_MODE: str | None = None
_REPO_ROOT = Path(__file__).resolve().parents[3]

# ---------------------------------------------------------------------
# Log categories
# ---------------------------------------------------------------------

CATEGORY_DATA_INTEGRITY = "data_integrity"
CATEGORY_FETCH = "fetch_failure"
CATEGORY_STORAGE = "storage_failure"
CATEGORY_HEARTBEAT = "health_heartbeat"

_REDACTED_PARAMS = ("apiKey", "apikey", "api_key")


def _merge_profile(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k] = _merge_profile(merged[k], v)
        else:
            merged[k] = v
    return merged


def _build_dict_config(profile: dict[str, Any], *, run_id: str | None, mode: str | None) -> dict[str, Any]:
    level_name = str(profile.get("level", "INFO")).upper()

    format_cfg = profile.get("format", {}) if isinstance(profile.get("format"), dict) else {}
    use_json = bool(format_cfg.get("json", True))
    formatter_name = "json" if use_json else "standard"

    handlers_cfg = profile.get("handlers", {}) if isinstance(profile.get("handlers"), dict) else {}
    console_cfg = handlers_cfg.get("console", {}) if isinstance(handlers_cfg.get("console"), dict) else {}
    file_cfg = handlers_cfg.get("file", {}) if isinstance(handlers_cfg.get("file"), dict) else {}

    handlers: dict[str, Any] = {}
    root_handlers: list[str] = []

    if bool(console_cfg.get("enabled", True)):
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "level": str(console_cfg.get("level", level_name)).upper(),
            "formatter": formatter_name,
            "filters": ["context"],
            "stream": "ext://sys.stderr",
        }
        root_handlers.append("console")

    if bool(file_cfg.get("enabled", False)):
        path_template = str(file_cfg.get("path", "artifacts/logs/{mode}-{run_id}.jsonl"))
        path = Path(path_template.format(
            run_id=run_id or "run",
            mode=mode or "default",
        ))
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "level": str(file_cfg.get("level", level_name)).upper(),
            "formatter": formatter_name,
            "filters": ["context"],
            "filename": str(path),
            "encoding": "utf-8",
        }
        root_handlers.append("file")

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "context": {"()": "tickdump.utils.logger.ContextFilter"},
        },
        "formatters": {
            "json": {"()": "tickdump.utils.logger.JsonFormatter"},
            "standard": {
                "()": "tickdump.utils.logger.UtcFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s %(context)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            },
        },
        "handlers": handlers,
        "root": {
            "level": level_name,
            "handlers": root_handlers,
        },
    }


def init_logging(
    config_path: str = "configs/logging.json",
    *,
    run_id: str | None = None,
    mode: str | None = None,
) -> None:
    """Configure the root logger from a profile-based JSON file.

    The file holds ``{"active_profile": ..., "profiles": {...}}``; the chosen
    profile is merged over ``profiles["default"]``.
    """
    global _DEBUG_ENABLED, _DEBUG_MODULES, _CONFIGURED, _RUN_ID, _MODE

    path = Path(config_path)
    if not path.is_absolute():
        # relative paths fall back to the checkout root when run from elsewhere
        cwd_path = Path.cwd() / path
        path = cwd_path if cwd_path.exists() else _REPO_ROOT / path
    with path.open("r", encoding="utf-8") as f:
        cfg = json.load(f)

    profiles = cfg.get("profiles", {})
    if not isinstance(profiles, dict):
        raise TypeError("logging.json 'profiles' must be a dict")

    profile_name = str(mode or cfg.get("active_profile") or "default")
    if profile_name not in profiles:
        raise KeyError(f"logging profile not found: {profile_name}")

    base_profile = profiles.get("default", {})
    if not isinstance(base_profile, dict):
        base_profile = {}

    profile = _merge_profile(base_profile, profiles.get(profile_name, {}))

    debug_cfg = profile.get("debug", {})
    if not isinstance(debug_cfg, dict):
        debug_cfg = {}
    _DEBUG_ENABLED = bool(debug_cfg.get("enabled", False))
    _DEBUG_MODULES = {str(x) for x in debug_cfg.get("modules", [])}

    _RUN_ID = run_id
    _MODE = mode or profile_name

    dict_cfg = _build_dict_config(profile, run_id=run_id, mode=mode or profile_name)
    logging.config.dictConfig(dict_cfg)

    _CONFIGURED = True
    get_logger.cache_clear()


class ContextFilter(logging.Filter):
    """
    Guarantees LogRecord has a `context` attribute and injects run fields.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = getattr(record, "context", None)

        if not _CONFIGURED:
            if not hasattr(record, "context"):
                setattr(record, "context", None)
            return True

        if ctx is None:
            ctx = {}
            setattr(record, "context", ctx)
        elif not isinstance(ctx, dict):
            ctx = {"_context": safe_jsonable(ctx)}
            setattr(record, "context", ctx)

        if _RUN_ID is not None and "run_id" not in ctx:
            ctx["run_id"] = _RUN_ID
        if _MODE is not None and "mode" not in ctx:
            ctx["mode"] = _MODE

        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": dt.isoformat(timespec="milliseconds"),
            "ts_ms": int(record.created * 1000),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "thread": record.threadName,
        }

        context = cast(Optional[dict[str, Any]], getattr(record, "context", None))

        if isinstance(context, dict) and context:
            # category is lifted to the top level
            if "category" in context:
                payload["category"] = safe_jsonable(context["category"])
                context = dict(context)
                context.pop("category", None)
            payload["context"] = safe_jsonable(context)

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


class UtcFormatter(logging.Formatter):
    converter = time.gmtime


@lru_cache(None)
def get_logger(name: str = "tickdump") -> Logger:
    logger = logging.getLogger(name)
    if not _CONFIGURED:
        logger.setLevel(logging.NOTSET)
    return logger


def safe_jsonable(x: Any) -> Any:
    if x is None or isinstance(x, (str, int, float, bool)):
        return x
    if isinstance(x, datetime):
        if x.tzinfo is None:
            return x.replace(tzinfo=timezone.utc).isoformat()
        return x.astimezone(timezone.utc).isoformat()
    if isinstance(x, Path):
        return str(x)
    if isinstance(x, Enum):
        value = safe_jsonable(getattr(x, "value", None))
        return value if value is not None else str(x)
    if isinstance(x, BaseException):
        return f"{type(x).__name__}: {x}"
    if dataclasses.is_dataclass(x) and not isinstance(x, type):
        return safe_jsonable(asdict(cast(Any, x)))
    if isinstance(x, Mapping):
        out: dict[str, Any] = {}
        for k, v in x.items():
            key = safe_jsonable(k)
            if not isinstance(key, str):
                key = repr(key)
            out[key] = safe_jsonable(v)
        return out
    if isinstance(x, (list, tuple, set)):
        return [safe_jsonable(v) for v in x]
    return str(x)


def redact_url(url: str) -> str:
    """Mask credential query params so URLs can be logged."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    pairs = [
        (k, "***" if k in _REDACTED_PARAMS else v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(pairs, safe="*:,")))


def _sanitize_context(context: dict[str, Any]) -> dict[str, Any]:
    cleaned = safe_jsonable(context)
    if isinstance(cleaned, dict):
        return cleaned
    return {"_context": cleaned}


def _debug_module_matches(logger_name: str, module: str) -> bool:
    module = module.strip()
    if not module:
        return False
    if logger_name == module or logger_name.startswith(module + "."):
        return True
    parts = logger_name.split(".")
    return module in parts


def log_debug(logger: Logger, msg: str, **context):
    if not _DEBUG_ENABLED:
        return
    if _DEBUG_MODULES:
        if not any(_debug_module_matches(logger.name, m) for m in _DEBUG_MODULES):
            return
    logger.debug(msg, extra={"context": _sanitize_context(context)})


def log_info(logger: Logger, msg: str, **context):
    logger.info(msg, extra={"context": _sanitize_context(context)})


def log_warn(logger: Logger, msg: str, **context):
    logger.warning(msg, extra={"context": _sanitize_context(context)})


def log_error(logger: Logger, msg: str, **context):
    logger.error(msg, extra={"context": _sanitize_context(context)})

# ---------------------------------------------------------------------
# Domain-specific logging helpers
# ---------------------------------------------------------------------

def log_data_integrity(logger: Logger, msg: str, **context):
    """
    Suspicious source data: truncated pagination, empty universes.
    Expected context: url, symbol, kind, n_results, limit, headers
    """
    context["category"] = CATEGORY_DATA_INTEGRITY
    logger.warning(msg, extra={"context": _sanitize_context(context)})


def log_fetch_failure(logger: Logger, msg: str, **context):
    """
    Transport and decode failures.
    Expected context: url, status, headers, body, symbol, kind, page
    """
    context["category"] = CATEGORY_FETCH
    logger.error(msg, extra={"context": _sanitize_context(context)})


def log_storage_failure(logger: Logger, msg: str, **context):
    """
    Archive create/write/close failures.
    Expected context: path, symbol, day, err_type, err
    """
    context["category"] = CATEGORY_STORAGE
    logger.error(msg, extra={"context": _sanitize_context(context)})


def log_heartbeat(logger: Logger, msg: str, **context):
    """
    Progress logs.
    Expected context: day, done, total, in_flight, error_count
    """
    context["category"] = CATEGORY_HEARTBEAT
    logger.info(msg, extra={"context": _sanitize_context(context)})
