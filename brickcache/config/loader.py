from __future__ import annotations

from pathlib import Path
import yaml
from .schema import BrickCacheConfig


def load_config(path: str) -> BrickCacheConfig:
    p = Path(path)
    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping/dict. Got: {type(data)}")
    cfg = BrickCacheConfig(**data)
    cfg.raw = data
    return cfg
