import json
from pathlib import Path
from typing import Any

import yaml

from calcplan.core.models import CompilerSettings, PlanInput
from calcplan.utils.logger import setup_logger

logger = setup_logger(__name__)


class ConfigLoader:
    """Load and validate YAML/JSON configuration and input files."""

    @staticmethod
    def load_input(path: str | Path) -> PlanInput:
        """Load and validate a PlanInput from a YAML or JSON file."""
        data = ConfigLoader._load_mapping(path)
        plan_input = PlanInput(**data)
        table_count = sum(len(v) for v in plan_input.tables.values())
        logger.debug(f"Loaded input {plan_input.name!r} ({plan_input.game.value}, {table_count} tables)")
        return plan_input

    @staticmethod
    def load_settings(path: str | Path | None = None) -> CompilerSettings:
        """Load compiler settings; defaults when no path is given."""
        if path is None:
            return CompilerSettings()
        return CompilerSettings(**ConfigLoader._load_mapping(path))

    @staticmethod
    def _load_mapping(path: str | Path) -> dict[str, Any]:
        file_path = Path(path).resolve()

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        with open(file_path, encoding="utf-8") as f:
            if file_path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Expected a mapping in {file_path}, got {type(data).__name__}")
        return data
