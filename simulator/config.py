"""
Configuration loading module for the tiered deliberation simulator.

Loads YAML configuration with command line argument precedence.
"""

import yaml
import argparse
from typing import Dict, Any, Optional
from pathlib import Path

from models import EngineConfig


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, "r") as f:
        config = yaml.safe_load(f) or {}

    for section in ("simulation", "engine", "voters", "logging"):
        config.setdefault(section, {})
    return config


def merge_cli_args(config: Dict[str, Any], args: argparse.Namespace) -> Dict[str, Any]:
    """Override config values with command line arguments.

    CLI arguments take precedence over config file values.

    Args:
        config: Configuration dictionary from file
        args: Parsed command line arguments

    Returns:
        Updated configuration dictionary
    """
    simulation = config.setdefault("simulation", {})
    engine = config.setdefault("engine", {})

    if getattr(args, "num_participants", None) is not None:
        simulation["num_participants"] = args.num_participants

    if getattr(args, "run_seed", None) is not None:
        simulation["run_seed"] = args.run_seed

    if getattr(args, "dropout", None) is not None:
        simulation["dropout"] = args.dropout

    if getattr(args, "challenge_rounds", None) is not None:
        simulation["challenge_rounds"] = args.challenge_rounds
        if args.challenge_rounds > 0:
            engine["challenge_enabled"] = True

    if getattr(args, "variant", None) is not None:
        engine["variant"] = args.variant

    return config


def get_config_with_args(
    config_path: Optional[str] = None, args: Optional[argparse.Namespace] = None
) -> Dict[str, Any]:
    """Load configuration and apply CLI argument overrides.

    Args:
        config_path: Path to config file (default: "config.yaml")
        args: CLI arguments to override config values

    Returns:
        Final configuration dictionary with CLI precedence applied
    """
    if config_path is None:
        config_path = "config.yaml"

    config = load_config(config_path)

    if args is not None:
        config = merge_cli_args(config, args)

    return config


def engine_config(config: Dict[str, Any]) -> EngineConfig:
    """Validate the ``engine`` section into an EngineConfig."""
    return EngineConfig(**(config.get("engine") or {}))
