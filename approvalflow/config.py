from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel

from .engine.path import DEFAULT_APPROVAL_LABEL, MAX_WALK_STEPS


class EngineConfig(BaseModel):
    """Tuning knobs for graph traversal."""

    max_walk_steps: int = MAX_WALK_STEPS
    default_approval_label: str = DEFAULT_APPROVAL_LABEL


class ApprovalflowConfig(BaseModel):
    """Top-level configuration model."""

    engine: EngineConfig = EngineConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> ApprovalflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to APPROVALFLOW_CONFIG
            env variable or 'approvalflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("APPROVALFLOW_CONFIG", "approvalflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ApprovalflowConfig(**data)
    else:
        config = ApprovalflowConfig()

    env_db_url = os.getenv("APPROVALFLOW_DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
