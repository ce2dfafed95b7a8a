from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field


PartialPolicy = Literal["per_order", "single_slot"]
GroupScope = Literal["symbol", "global"]


class LogConfig(BaseModel):
    level: str = "INFO"
    json_logs: bool = Field(default=True, alias="json")
    file: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class EngineConfig(BaseModel):
    epsilon: float = Field(default=1e-8, gt=0)
    partial_policy: PartialPolicy = "per_order"
    group_scope: GroupScope = "symbol"
    dedupe_terminal_fills: bool = True
    dedupe_window: int = Field(default=10_000, ge=1)


class AppConfig(BaseModel):
    log: LogConfig = Field(default_factory=LogConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    return AppConfig.model_validate(data)
