"""Pipeline configuration.

Exports:
- PipelineConfig: explicit run configuration passed into the pipeline
- ModeConfig / get_mode_config: mode x scale tuning table
- load_config / get_config_value: YAML + environment loading helpers
"""

from .config_loader import (
    AnalysisMode,
    ModeConfig,
    PipelineConfig,
    ProjectScale,
    get_config_value,
    get_mode_config,
    load_config,
)

__all__ = [
    "AnalysisMode",
    "ModeConfig",
    "PipelineConfig",
    "ProjectScale",
    "get_config_value",
    "get_mode_config",
    "load_config",
]
