"""
Runtime settings and static workflow configuration.

Settings come from the environment (a .env file is honoured). The default
workflow transition table and the designated super-capability lists live in a
YAML file so deployments can change them without code edits.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import dotenv
import yaml
from loguru import logger

dotenv.load_dotenv()

DEFAULT_WORKFLOW_CONFIG = Path(__file__).resolve().parent.parent / "configs" / "workflow" / "default.yaml"


class Settings:
    """Configuration for the authorization core"""

    def __init__(self, **overrides):
        self.database_url = os.getenv("DATABASE_URL", "sqlite:///./docgate.db")
        self.db_echo = os.getenv("DB_ECHO", "False").lower() == "true"
        self.pool_size = int(os.getenv("DB_POOL_SIZE", "10"))
        self.max_overflow = int(os.getenv("DB_MAX_OVERFLOW", "20"))

        self.jwt_secret = os.getenv("JWT_SECRET")
        self.jwt_algorithm = os.getenv("JWT_ALGORITHM", "HS256")

        # 5 minutes for capability sets, 1 minute for the transition table
        self.capability_cache_ttl = int(os.getenv("CAPABILITY_CACHE_TTL", "300"))
        self.workflow_cache_ttl = int(os.getenv("WORKFLOW_CACHE_TTL", "60"))
        # Per-request wait for a capability fill, in seconds; 0 waits forever
        self.capability_resolve_timeout = float(os.getenv("CAPABILITY_RESOLVE_TIMEOUT", "10"))
        self.resolver_workers = int(os.getenv("RESOLVER_WORKERS", "8"))

        self.hierarchy_default_depth = int(os.getenv("HIERARCHY_DEFAULT_DEPTH", "3"))
        self.hierarchy_max_depth = int(os.getenv("HIERARCHY_MAX_DEPTH", "10"))

        self.workflow_config_path = os.getenv("WORKFLOW_CONFIG_PATH", str(DEFAULT_WORKFLOW_CONFIG))

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise ValueError(f"Unknown setting: {key}")
            setattr(self, key, value)

        if self.hierarchy_default_depth > self.hierarchy_max_depth:
            raise ValueError("HIERARCHY_DEFAULT_DEPTH cannot exceed HIERARCHY_MAX_DEPTH")

    def load_workflow_config(self) -> Dict[str, Any]:
        return load_yaml(self.workflow_config_path)


def load_yaml(path: Optional[str]) -> Dict[str, Any]:
    """Read a YAML mapping from disk"""
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(f"[CONFIG] YAML file not found: {path}")
        raise
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return data


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
