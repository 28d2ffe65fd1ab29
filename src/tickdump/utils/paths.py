from __future__ import annotations

from pathlib import Path

ARCHIVE_SUFFIX = ".arrow.lz4"


def archive_name(symbol: str, day: str) -> str:
    return f"{symbol}-{day}{ARCHIVE_SUFFIX}"


def archive_path(root: str | Path, *, day: str, symbol: str) -> Path:
    """Layout: <root>/<YYYY-MM-DD>/<SYMBOL>-<YYYY-MM-DD>.arrow.lz4"""
    return Path(root) / day / archive_name(symbol, day)


def ensure_day_dir(root: str | Path, day: str) -> Path:
    p = Path(root) / day
    p.mkdir(parents=True, exist_ok=True)
    return p
