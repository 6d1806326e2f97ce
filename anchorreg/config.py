# anchorreg/config.py
"""
Registry configuration.

Example registry.yaml:

    admin: "0x5f1c0d3e0b9a4c2e8f7a6b5d4c3b2a1908f7e6d5"
    store_dir: ./anchor-store
    log_level: DEBUG
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from .errors import InvalidInput
from .identity import is_null_identity
from .registry import AnchorRegistry

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass
class RegistryConfig:
    """Settings needed to build a registry."""
    admin: str
    store_dir: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "RegistryConfig":
        """Parse config from YAML string."""
        data = yaml.safe_load(yaml_content) or {}
        if not isinstance(data, dict):
            raise InvalidInput("Registry config must be a mapping")

        # Unquoted hex addresses load as ints
        admin = data.get("admin")
        if not isinstance(admin, str) or is_null_identity(admin):
            raise InvalidInput("Registry config requires a non-null admin string (quote hex addresses)")

        store_dir = data.get("store_dir")
        return cls(
            admin=admin,
            store_dir=Path(store_dir) if store_dir else None,
            log_level=str(data.get("log_level", "INFO")).upper(),
        )

    @classmethod
    def from_file(cls, path: Path | str) -> "RegistryConfig":
        """Load config from YAML file."""
        with open(path, "r") as f:
            return cls.from_yaml(f.read())

    def configure_logging(self):
        """Set up root logging at the configured level."""
        logging.basicConfig(
            level=getattr(logging, self.log_level, logging.INFO),
            format=LOG_FORMAT,
        )

    def build_registry(self, **kwargs) -> AnchorRegistry:
        """Create the registry described by this config."""
        return AnchorRegistry(admin=self.admin, store_dir=self.store_dir, **kwargs)
