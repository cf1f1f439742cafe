"""Deterministic single-process task timer."""

from .cli import main as cli_main
from .config_loader import load_config

__all__ = [
    "cli_main",
    "load_config",
    "clients",
    "config",
    "timing",
]
