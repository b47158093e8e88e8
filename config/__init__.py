"""Configuration management for the voting coordinator."""

from .config import (
    CoordinatorConfig,
    ProtocolConfig,
    ProverConfig,
    SystemConfig,
    load_config,
    save_config,
)

__all__ = ['SystemConfig', 'ProtocolConfig', 'ProverConfig', 'CoordinatorConfig', 'load_config', 'save_config']
