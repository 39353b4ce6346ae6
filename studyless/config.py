"""
Loading and saving AlgorithmParameters from YAML settings files.

A settings file holds the same keys as AlgorithmParameters; anything
missing takes its default and unknown keys are rejected. Step lists are
given in seconds or as ISO-8601 durations, e.g.:

    requested_retention: 0.9
    leech_threshold: 6
    auto_suspend_leeches: false
    learning_steps: [60, 600]
"""

import logging
from pathlib import Path
from typing import Union

import yaml
from pydantic import ValidationError

from .models import AlgorithmParameters

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when a settings file cannot be read or validated."""

    pass


def load_parameters_file(path: Union[str, Path]) -> AlgorithmParameters:
    """
    Read AlgorithmParameters from a YAML file.

    Raises:
        ConfigError: If the file is missing, is not a YAML mapping, or holds
            invalid or unknown settings.
    """
    settings_path = Path(path)
    try:
        raw = yaml.safe_load(settings_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read settings file {settings_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {settings_path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(
            f"Settings file {settings_path} must contain a mapping, got {type(raw).__name__}."
        )

    try:
        params = AlgorithmParameters.model_validate(raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid settings in {settings_path}: {e}") from e

    logger.info(f"Loaded algorithm parameters from {settings_path}")
    return params


def dump_parameters_file(
    params: AlgorithmParameters, path: Union[str, Path]
) -> None:
    """Write AlgorithmParameters to a YAML file readable by load_parameters_file."""
    data = params.model_dump(mode="json")
    data["weights"] = list(params.weights)
    data["learning_steps"] = [s.total_seconds() for s in params.learning_steps]
    data["relearning_steps"] = [s.total_seconds() for s in params.relearning_steps]
    Path(path).write_text(
        yaml.safe_dump(data, sort_keys=False), encoding="utf-8"
    )
