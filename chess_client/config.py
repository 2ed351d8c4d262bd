"""
Configuration for the chess client and the reference room server.

- Loads .env (python-dotenv), then settings.yml from the repo root if present.
- settings.yml takes precedence over environment variables; both fall back to defaults.
- Exposes SETTINGS, a frozen dataclass read by the client, replay playback and server.
"""
from dataclasses import dataclass
import os
from typing import Any, Callable

import yaml
from dotenv import load_dotenv

load_dotenv()


def _repo_root() -> str:
    # this file: chess_client/config.py -> repo root is one level up
    return os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


def _load_yaml(path: str) -> dict:
    if not os.path.isfile(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return data if isinstance(data, dict) else {}


_cfg = _load_yaml(os.environ.get("CHESSCLIENT_SETTINGS", os.path.join(_repo_root(), "settings.yml")))


def _get(name: str, default: Any, cast: Callable[[Any], Any] | None = None) -> Any:
    if name in _cfg:
        val = _cfg[name]
        return cast(val) if cast else val
    env = os.environ.get(name)
    if env is not None:
        return cast(env) if cast else env
    return default


@dataclass(frozen=True)
class Settings:
    # Replay / chat
    playback_interval_s: float
    message_cap: int

    # Logging
    log_level: str

    # Reference server bind address
    host: str
    port: int


SETTINGS = Settings(
    playback_interval_s=_get("CHESSCLIENT_PLAYBACK_INTERVAL_S", 0.8, cast=float),
    message_cap=_get("CHESSCLIENT_MESSAGE_CAP", 500, cast=int),
    log_level=str(_get("CHESSCLIENT_LOG_LEVEL", "INFO")).upper(),
    host=_get("CHESSCLIENT_HOST", "127.0.0.1"),
    port=_get("CHESSCLIENT_PORT", 8000, cast=int),
)
