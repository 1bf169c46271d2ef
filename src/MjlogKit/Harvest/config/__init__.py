"""
Harvest Configuration Package

Public API for loading, validating, and introspecting harvest configuration.

Example:
    from MjlogKit.Harvest.config import load_config, HarvestConfig

    # Load from file with env/CLI overrides
    config = load_config(
        path="harvest.yaml",
        cli_overrides={"workers": 4, "pacing": {"convert_min_interval_ms": 500}},
    )

    # Get config hash for reproducibility
    config_id = config.config_hash()
"""

from .loader import (
    ENV_PREFIX,
    export_config_schema,
    load_config,
    validate_config_file,
)
from .models import (
    EndpointsConfig,
    HarvestConfig,
    HttpClientConfig,
    LayoutConfig,
    PacingConfig,
    SelectionConfig,
)

__all__ = [
    # Models
    "HarvestConfig",
    "HttpClientConfig",
    "EndpointsConfig",
    "LayoutConfig",
    "SelectionConfig",
    "PacingConfig",
    # Loading/validation
    "ENV_PREFIX",
    "load_config",
    "validate_config_file",
    "export_config_schema",
]
