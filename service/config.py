"""Engine configuration with YAML support."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import Field

from progress_core.schemas import BaseSchema
from sandbox.execution import ExecutionOptions


class SandboxSettings(BaseSchema):
    timeout_ms: int = Field(default=5_000, gt=0)
    memory_limit_mb: int = Field(default=256, gt=0)
    capture_output: bool = True
    max_output_chars: int = Field(default=65_536, gt=0)

    def to_options(self) -> ExecutionOptions:
        return ExecutionOptions(
            timeout_ms=self.timeout_ms,
            memory_limit_mb=self.memory_limit_mb,
            capture_output=self.capture_output,
            max_output_chars=self.max_output_chars,
        )


class EngineConfig(BaseSchema):
    """Settings for the CLI and the services it wires together."""

    db_path: str = "data/codelab.db"
    log_level: str = "INFO"
    # Fixed seed makes success phrases reproducible.
    feedback_seed: int | None = None
    sandbox: SandboxSettings = Field(default_factory=SandboxSettings)


def load_config(yaml_path: str | Path) -> EngineConfig:
    """Load engine configuration from YAML file.

    Args:
        yaml_path: Path to YAML configuration file

    Returns:
        EngineConfig instance

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValueError: If YAML is invalid or has bad fields
    """
    yaml_path = Path(yaml_path)

    if not yaml_path.exists():
        raise FileNotFoundError(f"Config file not found: {yaml_path}")

    with open(yaml_path, "r", encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {yaml_path}: {e}") from e

    if not data:
        raise ValueError(f"Empty or invalid YAML file: {yaml_path}")

    try:
        return EngineConfig.from_dict(data)
    except Exception as e:
        raise ValueError(f"Invalid configuration in {yaml_path}: {e}") from e


def save_config(config: EngineConfig, yaml_path: str | Path) -> None:
    """Save engine configuration to YAML file."""
    yaml_path = Path(yaml_path)
    yaml_path.parent.mkdir(parents=True, exist_ok=True)

    data = config.to_dict()

    with open(yaml_path, "w", encoding="utf-8") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False, indent=2)
