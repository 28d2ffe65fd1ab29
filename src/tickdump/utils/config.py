from __future__ import annotations

import json
import os
from datetime import date
from pathlib import Path
from typing import Any, List, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator

from tickdump.exceptions.core import ConfigError

API_KEY_ENV = "POLYGON_API_KEY"

FetchFailurePolicy = Literal["abort", "skip"]


class PolygonConfig(BaseModel):
    api_key: str = Field(
        default_factory=lambda: os.getenv(API_KEY_ENV, ""),
        description="Credential appended to every request as `apiKey`.",
    )
    base_url: str = "https://api.polygon.io"
    timeout_s: float = Field(30.0, gt=0, description="Per-request connect/read timeout.")
    page_limit: int = Field(50_000, ge=1, le=50_000, description="Records per trades/quotes page.")
    tickers_limit: int = Field(1_000, ge=1, le=1_000, description="Records per tickers page.")

    @field_validator("base_url")
    @classmethod
    def _strip_base_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be absolute http(s), got {v!r}")
        return v


class DumpConfig(BaseModel):
    polygon: PolygonConfig = Field(default_factory=PolygonConfig)
    output_root: Path = Path("data/raw/ticks")
    days: List[str] = Field(default_factory=list)
    symbols: List[str] = Field(default_factory=list, description="Fixed universe; empty means list active tickers per day.")
    market: str = "stocks"
    ticker_type: str = "CS"
    concurrency: int = Field(50, ge=1, description="Max symbols in flight per day.")
    on_fetch_failure: FetchFailurePolicy = "abort"
    logging_config: str = "configs/logging.json"
    log_profile: str | None = None

    @field_validator("days")
    @classmethod
    def _check_days(cls, v: List[str]) -> List[str]:
        out: List[str] = []
        for d in v:
            s = str(d).strip()
            try:
                parsed = date.fromisoformat(s)
            except ValueError as e:
                raise ValueError(f"day must be YYYY-MM-DD, got {d!r}") from e
            out.append(parsed.isoformat())
        return out

    @field_validator("symbols")
    @classmethod
    def _strip_symbols(cls, v: List[str]) -> List[str]:
        out: List[str] = []
        for s in v:
            s = str(s).strip()
            if s and s not in out:
                out.append(s)
        return out

    def require_api_key(self) -> str:
        if not self.polygon.api_key:
            raise ConfigError(f"Polygon API key missing; set {API_KEY_ENV} or polygon.api_key")
        return self.polygon.api_key


def load_config(path: str | Path | None = None, **overrides: Any) -> DumpConfig:
    """Build a DumpConfig from an optional JSON file plus non-None overrides."""
    raw: dict[str, Any] = {}
    if path is not None:
        p = Path(path)
        try:
            with p.open("r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"config file not found: {p}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"config file is not valid JSON: {p}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"config root must be an object: {p}")

    for k, v in overrides.items():
        if v is None:
            continue
        if k == "polygon" and isinstance(v, dict):
            raw["polygon"] = {**raw.get("polygon", {}), **v}
        else:
            raw[k] = v

    try:
        return DumpConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
