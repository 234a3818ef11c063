"""
Settings loading for the flipbook backend.

Settings come from three layers, later layers winning:

- the YAML defaults shipped with the package (or the file named by FLIPBOOK_CONFIG)
- FLIPBOOK_* environment variables, optionally read from a .env file
- explicit overrides passed by the caller (tests, scripts)

The merged DictConfig is kept in struct mode so a typo in an override key
fails loudly instead of being silently ignored.
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

load_dotenv()

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config/config.yaml"

# Environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "FLIPBOOK_S3_ENDPOINT_URL": "storage.endpoint_url",
    "FLIPBOOK_S3_REGION": "storage.region",
    "FLIPBOOK_PUBLIC_BASE_URL": "storage.public_base_url",
    "FLIPBOOK_PDF_BUCKET": "storage.buckets.pdfs",
    "FLIPBOOK_PAGES_BUCKET": "storage.buckets.pages",
    "FLIPBOOK_DB_PATH": "database.path",
    "FLIPBOOK_ADMIN_EMAIL": "auth.admin_email",
    "FLIPBOOK_ADMIN_PASSWORD": "auth.admin_password",
}


def _config_path() -> Path:
    override = os.environ.get("FLIPBOOK_CONFIG")
    path = Path(override) if override else DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found at {path}")
    return path


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    return OmegaConf.load(_config_path())


def get_default_config_container(resolve: bool = False) -> Dict[str, Any]:
    config = _load_default_config()
    return OmegaConf.to_container(config, resolve=resolve)  # type: ignore[return-value]


def make_settings(overrides: Optional[Dict[str, Any]] = None) -> DictConfig:
    """
    Build the runtime settings.

    Args:
        overrides: Nested mapping merged on top of defaults and environment

    Returns:
        DictConfig in struct mode

    Raises:
        omegaconf.errors.ConfigKeyError: If an override names an unknown key
    """
    base = OmegaConf.create(get_default_config_container(resolve=False))
    OmegaConf.set_struct(base, True)

    # Environment values are kept as strings; OmegaConf.from_dotlist would
    # YAML-parse them and turn a numeric password into an int.
    for variable, key in ENV_OVERRIDES.items():
        value = os.environ.get(variable)
        if value:
            OmegaConf.update(base, key, value)

    if overrides:
        base = OmegaConf.merge(base, OmegaConf.create(overrides))
    return base  # type: ignore[return-value]


@lru_cache(maxsize=1)
def get_settings() -> DictConfig:
    return make_settings()
