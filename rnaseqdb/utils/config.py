# rnaseqdb/utils/config.py
"""
Configuration loading utility.
Handles loading the YAML settings file and resolving values that can also
be given on the command line.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union

DEFAULT_CONFIG: Dict[str, Any] = {
    "db": "rnaseqdb.sqlite",
    "log_file": None,
    "ena": {
        "base_url": "https://www.ebi.ac.uk/ena",
        "timeout": 30,
    },
    "export": {
        "files_dir": None,
        "hub_root": "hubs",
        "hub_server": None,
        "email": None,
    },
}


def load_config(path: Optional[Union[str, Path]]) -> Dict[str, Any]:
    """
    Loads a YAML configuration file and fills in defaults.

    Args:
        path: The path to the YAML file. None returns the defaults.

    Returns:
        A dictionary containing the configuration.
    """
    cfg: Dict[str, Any] = {}
    if path is not None:
        with open(path, 'r') as f:
            cfg = yaml.safe_load(f) or {}
        if not isinstance(cfg, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")
    return _merge(DEFAULT_CONFIG, cfg)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def resolve(cfg: Dict[str, Any], dotted_key: str, override: Any = None) -> Any:
    """
    Return `override` when given, else the config value at `dotted_key`
    (e.g. "export.files_dir").
    """
    if override is not None:
        return override
    node: Any = cfg
    for part in dotted_key.split("."):
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node
