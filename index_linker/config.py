"""
Runtime configuration read from the environment.

Built once at process start and handed to the components that need it;
nothing below reads os.environ after load_config() returns.
"""
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-3-flash-preview"  # Flash: fast, good enough vision
DEFAULT_THINKING_BUDGET = 1024

_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class DetectorConfig:
    api_key: str = ""
    model: str = DEFAULT_MODEL
    thinking_budget: int = DEFAULT_THINKING_BUDGET
    endpoint: str = GEMINI_ENDPOINT
    timeout: Optional[float] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key)


@dataclass(frozen=True)
class AppConfig:
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    continue_on_error: bool = True
    log_level: str = "INFO"
    port: int = 8000


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() not in _FALSE_VALUES


def load_config(environ: Mapping[str, str] = None) -> AppConfig:
    """Build the AppConfig from environment variables (os.environ by default)."""
    env = os.environ if environ is None else environ

    timeout = env.get("GEMINI_TIMEOUT")
    detector = DetectorConfig(
        api_key=env.get("GEMINI_API_KEY") or env.get("API_KEY") or "",
        model=env.get("GEMINI_MODEL") or DEFAULT_MODEL,
        thinking_budget=int(env.get("GEMINI_THINKING_BUDGET") or DEFAULT_THINKING_BUDGET),
        endpoint=(env.get("GEMINI_ENDPOINT") or GEMINI_ENDPOINT).rstrip("/"),
        timeout=float(timeout) if timeout else None,
    )
    return AppConfig(
        detector=detector,
        continue_on_error=_env_flag(env.get("SCAN_CONTINUE_ON_ERROR"), True),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        port=int(env.get("PORT") or 8000),
    )
