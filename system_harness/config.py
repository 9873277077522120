"""System configuration files.

A configuration file is JSON or YAML. A mapping with an ``arch`` key
describes a QEMU system; a mapping with an ``image`` key describes a
container.
"""
import json
from pathlib import Path
from typing import Union

import yaml
from pydantic import ValidationError

from system_harness.container import ContainerSystemConfig
from system_harness.errors import ConfigError
from system_harness.qemu import QemuSystemConfig
from system_harness.settings import load_settings

SystemConfig = Union[QemuSystemConfig, ContainerSystemConfig]

YAML_SUFFIXES = {".yaml", ".yml"}


def _parse(path: Path, text: str) -> object:
    if path.suffix.lower() in YAML_SUFFIXES:
        try:
            return yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}")


def parse_config(data: object, source: str = "<config>") -> SystemConfig:
    """Build a system config from already-parsed data.

    Args:
        data: Mapping loaded from JSON or YAML
        source: Where the data came from, for error messages

    Returns:
        QemuSystemConfig or ContainerSystemConfig

    Raises:
        ConfigError: If the data describes neither kind of system or fails
            validation
    """
    if not isinstance(data, dict):
        raise ConfigError(f"{source}: expected a mapping at the top level")

    if "arch" in data:
        model = QemuSystemConfig
    elif "image" in data:
        model = ContainerSystemConfig
        data = dict(data)
        data.setdefault("tool", load_settings().container_tool)
    else:
        raise ConfigError(
            f"{source}: must name either 'arch' (QEMU) or 'image' (container)"
        )

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {source}: {e}")


def load_config(path: Union[str, Path]) -> SystemConfig:
    """Load a system configuration file.

    Args:
        path: JSON or YAML file (chosen by extension; JSON unless .yaml/.yml)

    Returns:
        QemuSystemConfig or ContainerSystemConfig

    Raises:
        ConfigError: If the file can't be read, parsed or validated
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}")
    return parse_config(_parse(path, text), source=str(path))
