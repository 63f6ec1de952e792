# src/therasched/dataloader/config_loader.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from therasched.errors import ConfigError
from therasched.schemas.config import EngineConfig

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = {".yaml", ".yml"}


class ConfigLoader:
    """
    @brief
    Reads config.yaml into a validated EngineConfig.

    @details
    Every failure mode (missing file, wrong extension, YAML syntax, empty
    document, non-mapping root, schema mismatch) surfaces as ConfigError
    with a source and a suggested action.
    """

    def load(self, path: Path | str) -> EngineConfig:
        """
        @brief
        Load and validate engine configuration.

        @params
            path : Path | str
                Location of config.yaml (.yaml or .yml).

        @returns
            EngineConfig with defaults applied.

        @raises
            ConfigError
        """
        # (1) Raw mapping
        data = self._read_yaml(Path(path))

        # (2) Schema
        cfg = self._validate(data)
        logger.info(
            "Loaded config %s (proposer=%s, max_patch_ops=%d)",
            path,
            cfg.proposer.provider,
            cfg.repair.max_patch_ops,
        )
        return cfg

    def _read_yaml(self, path: Path) -> dict[str, Any]:
        source = "ConfigLoader._read_yaml"

        if not path.is_file():
            raise ConfigError(
                message=f"Configuration file not found: {path}",
                source=source,
                suggested_action="Pass the path of an existing config.yaml.",
            )
        if path.suffix.lower() not in _YAML_SUFFIXES:
            raise ConfigError(
                message=f"Invalid configuration file extension: {path.suffix}",
                source=source,
                suggested_action="Use a .yaml or .yml file.",
            )

        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(
                message=f"YAML parsing failed: {e}",
                source=source,
                suggested_action="Fix YAML syntax or indentation.",
            ) from e
        except OSError as e:
            raise ConfigError(
                message=f"Unable to read configuration file: {e}",
                source=source,
                suggested_action="Check file permissions.",
            ) from e

        if data is None:
            raise ConfigError(
                message="Configuration file is empty.",
                source=source,
                suggested_action="Populate config.yaml or omit it to use defaults.",
            )
        if not isinstance(data, Mapping):
            raise ConfigError(
                message="Configuration root must be a mapping (key: value pairs).",
                source=source,
                suggested_action="Use key: value pairs at the top level of config.yaml.",
            )
        return dict(data)

    def _validate(self, data: dict[str, Any]) -> EngineConfig:
        try:
            return EngineConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(
                message=f"Invalid configuration structure: {e}",
                source="ConfigLoader._validate",
                suggested_action=(
                    "Check field names, types and bounds in config.yaml. "
                    "Unknown keys are rejected."
                ),
            ) from e


__all__ = ["ConfigLoader"]
