# utils/env.py
import os
from typing import Optional

from dotenv import load_dotenv


def load_env() -> None:
    """Best-effort load of .env/.env.local from the service root."""
    service_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    for env_path in (
        os.path.join(service_root, ".env"),
        os.path.join(service_root, ".env.local"),
    ):
        if os.path.exists(env_path):
            load_dotenv(env_path, override=False)


def env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = (os.environ.get(name) or "").strip()
    return raw or default


def env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default
