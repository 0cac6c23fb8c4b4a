from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()

_HERE = Path(__file__).resolve()
_CANDIDATE_CONFIG_PATHS = [parent / "config/config.yaml" for parent in _HERE.parents[:4]]

CONFIG_PATH = next((path for path in _CANDIDATE_CONFIG_PATHS if path.exists()), None)
if CONFIG_PATH is None:  # pragma: no cover - fail fast in misconfigured environments
    raise FileNotFoundError("Default config.yaml could not be located; reinstall the package or restore config/config.yaml.")

SECTIONS = ["app", "database", "storage", "ai", "notifications", "signature", "sessions", "rate_limit", "logging"]


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve, enum_to_str=True)  # type: ignore[return-value]


def make_runtime_config(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Merge overrides onto the defaults.

    The defaults are in struct mode, so an override for a key that does not exist
    in config.yaml raises instead of silently adding a new setting. Environment
    interpolations are resolved at access time.
    """
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    cli_config = OmegaConf.create(overrides or {})
    merged = DictConfig(OmegaConf.merge(base, cli_config))
    return merged


@lru_cache(maxsize=1)
def get_settings() -> DictConfig:
    """Runtime configuration shared by the application singletons."""
    return make_runtime_config()


def section(config: DictConfig, name: str) -> Dict[str, Any]:
    """Resolved plain-dict view of one config section."""
    if name not in SECTIONS:
        raise KeyError(f"Unknown config section: {name}")
    return OmegaConf.to_container(config[name], resolve=True)  # type: ignore[return-value]
