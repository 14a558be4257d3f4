# apps/common/settings.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data or {}


def _env(key: str) -> Optional[str]:
    v = os.getenv(key)
    return v.strip() if isinstance(v, str) and v.strip() else None


def _as_path(v: str) -> Path:
    return Path(v).expanduser().resolve()


def _first(*vals: Any) -> Any:
    for v in vals:
        if v is not None:
            return v
    return None


def _as_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AppSettings:
    database_url: str
    upload_dir: Path
    sessions_dir: Path
    vision_url: str
    vision_model: str = "llama3.2-vision:11b"
    vision_timeout_s: float = 60.0
    max_retries: int = 2
    allow_overnight: bool = False
    session_ttl_s: float = 86400.0
    max_concurrency: int = 4
    preprocessing: Dict[str, Any] = field(default_factory=dict)


def load_settings(config_path: Optional[str] = None) -> AppSettings:
    """
    Resolution order (highest -> lowest):
      1) Explicit function argument
      2) ROSTER_CONFIG_PATH env var
      3) config/app.yaml
    Individual fields can be overridden via env vars:
      - ROSTER_DATABASE_URL
      - ROSTER_UPLOAD_DIR
      - ROSTER_SESSIONS_DIR
      - ROSTER_SESSION_TTL_S
      - ROSTER_VISION_URL
      - ROSTER_VISION_MODEL
      - ROSTER_VISION_TIMEOUT_S
      - ROSTER_MAX_RETRIES
      - ROSTER_ALLOW_OVERNIGHT
    """
    cfg_path = (
        Path(config_path)
        if config_path
        else Path(_env("ROSTER_CONFIG_PATH") or "config/app.yaml")
    )
    cfg = _read_yaml(cfg_path)
    vision = cfg.get("vision") or {}
    validation = cfg.get("validation") or {}

    database_url = _env("ROSTER_DATABASE_URL") or cfg.get("database_url")
    upload_dir = _env("ROSTER_UPLOAD_DIR") or cfg.get("upload_dir")
    sessions_dir = _env("ROSTER_SESSIONS_DIR") or cfg.get("sessions_dir")
    vision_url = _env("ROSTER_VISION_URL") or vision.get("base_url")

    missing = []
    if not database_url:
        missing.append("database_url / ROSTER_DATABASE_URL")
    if not upload_dir:
        missing.append("upload_dir / ROSTER_UPLOAD_DIR")
    if not sessions_dir:
        missing.append("sessions_dir / ROSTER_SESSIONS_DIR")
    if not vision_url:
        missing.append("vision.base_url / ROSTER_VISION_URL")

    if missing:
        raise ValueError(
            "Missing required configuration: " + ", ".join(missing) +
            f". Config file used: {cfg_path}"
        )

    return AppSettings(
        database_url=str(database_url),
        upload_dir=_as_path(str(upload_dir)),
        sessions_dir=_as_path(str(sessions_dir)),
        vision_url=str(vision_url),
        vision_model=_env("ROSTER_VISION_MODEL") or vision.get("model") or "llama3.2-vision:11b",
        vision_timeout_s=float(_first(_env("ROSTER_VISION_TIMEOUT_S"), vision.get("timeout_s"), 60)),
        max_retries=int(_first(_env("ROSTER_MAX_RETRIES"), cfg.get("max_retries"), 2)),
        allow_overnight=_as_bool(_first(_env("ROSTER_ALLOW_OVERNIGHT"), validation.get("allow_overnight"), False)),
        session_ttl_s=float(_first(_env("ROSTER_SESSION_TTL_S"), cfg.get("session_ttl_s"), 86400)),
        max_concurrency=int(_first(cfg.get("max_concurrency"), 4)),
        preprocessing=dict(cfg.get("preprocessing") or {}),
    )
