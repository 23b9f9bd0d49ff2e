"""
Configuration module for GraphSAGE training.

This module provides configuration loading and validation utilities.
"""

from pathlib import Path
import yaml
from typing import Dict, Any, Optional

from graphsage_train.training.parameters import GraphSageTrainParameters


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, loads default.yaml

    Returns:
        Configuration dictionary

    Raises:
        ValueError: If the file does not hold a mapping
    """
    if config_path is None:
        config_path = Path(__file__).parent / "default.yaml"
    else:
        config_path = Path(config_path)

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f)

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ValueError(f"Configuration in {config_path} must be a mapping")

    return config


def get_default_config() -> Dict[str, Any]:
    """Get default configuration dictionary."""
    return load_config()


def load_parameters(config_path: Optional[str] = None) -> GraphSageTrainParameters:
    """
    Load validated training parameters from a YAML file.

    Args:
        config_path: Path to config file. If None, loads default.yaml

    Returns:
        GraphSageTrainParameters built from the 'model' and 'training' sections
    """
    return GraphSageTrainParameters.from_config(load_config(config_path))


__all__ = ['load_config', 'get_default_config', 'load_parameters']
