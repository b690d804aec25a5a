"""Configuration loading for docweave (.docweave.yml + DOCWEAVE_* env vars).

Precedence (highest first):
1. Explicit keyword overrides passed to ``load_config``
2. DOCWEAVE_* environment variables
3. The YAML file
4. Dataclass defaults
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from ..constants import DEFAULT_EXCLUDE_DIRS
from ..errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = ".docweave.yml"
DEFAULT_DATABASE_URL = "sqlite:///.docweave/docweave.db"


class AnalysisMode(str, Enum):
    FAST = "fast"
    STANDARD = "standard"
    DEEP = "deep"


class ProjectScale(str, Enum):
    """Project size bucket, derived from file count."""
    SMALL = "small"              # < 50 files
    MEDIUM = "medium"            # 50-199
    LARGE = "large"              # 200-499
    ENTERPRISE = "enterprise"    # 500+

    @classmethod
    def from_file_count(cls, count: int) -> "ProjectScale":
        if count < 50:
            return cls.SMALL
        if count < 200:
            return cls.MEDIUM
        if count < 500:
            return cls.LARGE
        return cls.ENTERPRISE


@dataclass(frozen=True)
class ModeConfig:
    """Per mode x scale tuning for every phase."""

    # Characterization
    char_turn3_enabled: bool = False
    char_refinement_rounds: int = 0
    # Bottom-up
    bottom_up_batch_size: int = 10
    bottom_up_max_file_chars: int = 10000
    bottom_up_concurrency: int = 4
    # Top-down
    top_down_max_agents: int = 4
    # Refinement
    refinement_max_turns: int = 3
    refinement_quality_target: float = 0.80


# Only the combinations that differ from ModeConfig() are listed.
_MODE_TABLE: Dict[Tuple[AnalysisMode, ProjectScale], ModeConfig] = {
    (AnalysisMode.FAST, ProjectScale.SMALL): ModeConfig(
        bottom_up_batch_size=15, bottom_up_max_file_chars=8000, bottom_up_concurrency=2,
        top_down_max_agents=1, refinement_max_turns=1, refinement_quality_target=0.60,
    ),
    (AnalysisMode.FAST, ProjectScale.MEDIUM): ModeConfig(
        bottom_up_batch_size=15, bottom_up_max_file_chars=8000, bottom_up_concurrency=3,
        top_down_max_agents=2, refinement_max_turns=2, refinement_quality_target=0.60,
    ),
    (AnalysisMode.FAST, ProjectScale.LARGE): ModeConfig(
        bottom_up_batch_size=20, bottom_up_max_file_chars=8000, bottom_up_concurrency=4,
        top_down_max_agents=2, refinement_max_turns=2, refinement_quality_target=0.65,
    ),
    (AnalysisMode.FAST, ProjectScale.ENTERPRISE): ModeConfig(
        bottom_up_batch_size=25, bottom_up_max_file_chars=6000, bottom_up_concurrency=6,
        top_down_max_agents=3, refinement_max_turns=2, refinement_quality_target=0.65,
    ),
    (AnalysisMode.STANDARD, ProjectScale.SMALL): ModeConfig(
        bottom_up_concurrency=3, top_down_max_agents=3, refinement_quality_target=0.75,
    ),
    (AnalysisMode.STANDARD, ProjectScale.LARGE): ModeConfig(
        char_turn3_enabled=True, char_refinement_rounds=1, bottom_up_batch_size=12,
        bottom_up_concurrency=5, refinement_max_turns=4, refinement_quality_target=0.85,
    ),
    (AnalysisMode.STANDARD, ProjectScale.ENTERPRISE): ModeConfig(
        char_turn3_enabled=True, char_refinement_rounds=1, bottom_up_batch_size=15,
        bottom_up_concurrency=6, refinement_max_turns=5, refinement_quality_target=0.90,
    ),
    (AnalysisMode.DEEP, ProjectScale.SMALL): ModeConfig(
        char_turn3_enabled=True, char_refinement_rounds=1, bottom_up_batch_size=8,
        bottom_up_max_file_chars=16000, bottom_up_concurrency=4,
        refinement_max_turns=4, refinement_quality_target=0.85,
    ),
    (AnalysisMode.DEEP, ProjectScale.MEDIUM): ModeConfig(
        char_turn3_enabled=True, char_refinement_rounds=1, bottom_up_batch_size=8,
        bottom_up_max_file_chars=16000, bottom_up_concurrency=5,
        refinement_max_turns=5, refinement_quality_target=0.90,
    ),
    (AnalysisMode.DEEP, ProjectScale.LARGE): ModeConfig(
        char_turn3_enabled=True, char_refinement_rounds=2, bottom_up_batch_size=10,
        bottom_up_max_file_chars=14000, bottom_up_concurrency=6,
        refinement_max_turns=6, refinement_quality_target=0.92,
    ),
    (AnalysisMode.DEEP, ProjectScale.ENTERPRISE): ModeConfig(
        char_turn3_enabled=True, char_refinement_rounds=2, bottom_up_batch_size=12,
        bottom_up_max_file_chars=12000, bottom_up_concurrency=8,
        refinement_max_turns=8, refinement_quality_target=0.95,
    ),
}


def get_mode_config(mode: AnalysisMode, scale: ProjectScale) -> ModeConfig:
    """Return the tuning for a mode x scale combination."""
    return _MODE_TABLE.get((AnalysisMode(mode), ProjectScale(scale)), ModeConfig())


@dataclass(frozen=True)
class PipelineConfig:
    """Explicit configuration for one documentation run.

    Passed by value into DocumentationPipeline; nothing reads ambient globals.
    """

    mode: AnalysisMode = AnalysisMode.STANDARD
    database_url: str = DEFAULT_DATABASE_URL
    timeout_seconds: float = 3600.0
    max_retries: int = 3
    domain_concurrency: int = 3
    child_context_token_budget: int = 2000
    flat_project_threshold: int = 10
    llm_grouping_max_files: int = 50
    max_file_bytes: int = 512 * 1024
    page_size: int = 500
    exclude_dirs: Tuple[str, ...] = DEFAULT_EXCLUDE_DIRS
    # Explicit ModeConfig wins over the mode x scale table
    mode_override: Optional[ModeConfig] = None

    def for_scale(self, scale: ProjectScale) -> ModeConfig:
        if self.mode_override is not None:
            return self.mode_override
        return get_mode_config(self.mode, scale)


def get_config_value(config: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Nested dictionary lookup: get_config_value(cfg, "a", "b", default=1)."""
    node: Any = config
    for key in keys:
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top-level YAML must be a mapping")
    return raw


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if os.getenv("DOCWEAVE_DATABASE_URL"):
        overrides["database_url"] = os.environ["DOCWEAVE_DATABASE_URL"]
    if os.getenv("DOCWEAVE_MODE"):
        overrides["mode"] = os.environ["DOCWEAVE_MODE"]
    if os.getenv("DOCWEAVE_TIMEOUT"):
        overrides["timeout_seconds"] = os.environ["DOCWEAVE_TIMEOUT"]
    return overrides


def _coerce(raw: Dict[str, Any]) -> Dict[str, Any]:
    known = {f.name: f for f in fields(PipelineConfig)}
    values: Dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key: {key}")
            continue
        try:
            if key == "mode":
                value = AnalysisMode(str(value).lower())
            elif key == "exclude_dirs":
                value = tuple(value)
            elif key == "mode_override":
                value = ModeConfig(**value) if value else None
            elif key in ("timeout_seconds",):
                value = float(value)
            elif key in ("max_retries", "domain_concurrency", "child_context_token_budget",
                         "flat_project_threshold", "llm_grouping_max_files",
                         "max_file_bytes", "page_size"):
                value = int(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value for '{key}': {value!r} ({e})") from e
        values[key] = value
    return values


def load_config(path: Optional[str] = None, **overrides: Any) -> PipelineConfig:
    """Build a PipelineConfig from YAML, environment and explicit overrides.

    Args:
        path: YAML file. Defaults to ./.docweave.yml when it exists.
        **overrides: Keyword values that win over every other source.
    """
    raw: Dict[str, Any] = {}
    config_path = Path(path) if path else Path(DEFAULT_CONFIG_FILE)
    if config_path.is_file():
        data = _read_yaml(config_path)
        # Accept either a top-level "docweave:" section or bare keys
        raw = dict(get_config_value(data, "docweave", default=data))
        logger.info(f"Loaded configuration from {config_path}")
    elif path:
        raise ConfigError(f"Config file not found: {path}")

    raw.update(_env_overrides())
    raw.update({k: v for k, v in overrides.items() if v is not None})
    return replace(PipelineConfig(), **_coerce(raw))
