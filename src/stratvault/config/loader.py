"""Layered configuration loading.

A deployment file only lists what differs from `defaults.yaml`; nested
mappings (fees, leverage) are merged key by key, lists such as `inputs`
replace the default list whole. Keyword overrides apply last, so a script
can tweak one parameter of a stored deployment.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from ..errors import InvalidData
from .schema import VaultConfig

logger = logging.getLogger(__name__)

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

PathLike = Union[str, Path]


def merge_layers(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge overlay into base (overlay wins on conflict)."""
    result = dict(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_layers(result[key], value)
        else:
            result[key] = value
    return result


def read_layer(yaml_path: PathLike) -> Dict[str, Any]:
    """
    Read one YAML layer.

    An empty file is an empty layer.

    Raises:
        InvalidData: If the file does not hold a mapping
    """
    with open(yaml_path, 'r') as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidData(f"{yaml_path}: expected a mapping at top level, got {type(data).__name__}")
    return data


def load_config(yaml_path: Optional[PathLike] = None, **overrides: Any) -> VaultConfig:
    """
    Load configuration: defaults, then a deployment file, then overrides.

    Args:
        yaml_path: Deployment file layered over defaults.yaml (optional)
        **overrides: Top-level fields applied last; dict values merge

    Returns:
        VaultConfig object

    Raises:
        InvalidData: If the merged configuration fails validation
    """
    data = read_layer(DEFAULTS_PATH)
    source = str(DEFAULTS_PATH)
    if yaml_path is not None:
        data = merge_layers(data, read_layer(yaml_path))
        source = str(yaml_path)
    if overrides:
        data = merge_layers(data, overrides)
        logger.debug("Config overrides for %s: %s", source, sorted(overrides))

    try:
        config = VaultConfig.from_dict(data)
    except ValidationError as exc:
        raise InvalidData(f"Invalid configuration from {source}: {exc}") from exc
    logger.info("Loaded vault config %s (%s) from %s, hash %s", config.name, config.symbol, source, config.compute_hash()[:12])
    return config


def config_from_dict(data: Dict[str, Any], layered: bool = False) -> VaultConfig:
    """
    Create config from dictionary.

    Args:
        data: Configuration dictionary
        layered: Merge `data` over defaults.yaml instead of using it alone

    Raises:
        InvalidData: If the configuration fails validation
    """
    if layered:
        data = merge_layers(read_layer(DEFAULTS_PATH), data)
    try:
        return VaultConfig.from_dict(data)
    except ValidationError as exc:
        raise InvalidData(f"Invalid configuration: {exc}") from exc


def save_config(config: VaultConfig, yaml_path: PathLike, only_changes: bool = False) -> Path:
    """
    Write a configuration as YAML.

    Args:
        config: Configuration to store
        yaml_path: Target file
        only_changes: Write only the fields that differ from defaults.yaml

    Returns:
        Path written
    """
    data = config.to_dict()
    if only_changes:
        defaults = VaultConfig.from_dict(read_layer(DEFAULTS_PATH)).to_dict()
        data = {k: v for k, v in data.items() if defaults.get(k) != v}
    path = Path(yaml_path)
    with open(path, 'w') as f:
        yaml.safe_dump(data, f, sort_keys=False)
    return path
