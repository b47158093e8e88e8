import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

COORDINATOR_KEY_ENV = "COORDINATOR_PRIVATE_KEY"


@dataclass
class ProtocolConfig:
    state_tree_depth: int = 2
    state_tree_sub_depth: int = 1
    message_tree_depth: int = 2
    message_batch_depth: int = 1
    vote_option_tree_depth: int = 1
    tally_batch_size: int = 5
    quadratic: bool = True
    initial_voice_credits: int = 100
    poll_duration: int = 3600

    def __post_init__(self):
        if self.state_tree_sub_depth > self.state_tree_depth:
            raise ValueError("state_tree_sub_depth cannot exceed state_tree_depth")
        if self.message_batch_depth > self.message_tree_depth:
            raise ValueError("message_batch_depth cannot exceed message_tree_depth")


@dataclass
class ProverConfig:
    build_dir: Path = field(default_factory=lambda: Path("circuits/build"))
    process_circuit: str = "MessageProcessor"
    tally_circuit: str = "TallyVotes"
    snarkjs_bin: str = "snarkjs"
    node_bin: str = "node"
    proof_timeout: int = 600
    parallel_workers: int = 1

    def __post_init__(self):
        self.build_dir = Path(self.build_dir)
        self.parallel_workers = max(1, int(self.parallel_workers))


@dataclass
class CoordinatorConfig:
    private_key: Optional[str] = None
    descriptor_path: Path = field(default_factory=lambda: Path("deployment.json"))
    poll_interval: int = 30
    strict_descriptor: bool = False

    def __post_init__(self):
        self.descriptor_path = Path(self.descriptor_path)
        if not self.private_key:
            self.private_key = os.environ.get(COORDINATOR_KEY_ENV) or None


@dataclass
class SystemConfig:
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    prover: ProverConfig = field(default_factory=ProverConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    results_dir: Path = field(default_factory=lambda: Path("results"))
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        self.results_dir = Path(self.results_dir)

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.results_dir.mkdir(parents=True, exist_ok=True)

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.enable_debug_mode else "INFO"


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")
    config_path = Path(config_path)

    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}

            coordinator_data = dict(config_data.get('coordinator', {}))
            return SystemConfig(
                protocol=ProtocolConfig(**config_data.get('protocol', {})),
                prover=ProverConfig(**config_data.get('prover', {})),
                coordinator=CoordinatorConfig(**coordinator_data),
                log_dir=Path(config_data.get('log_dir', 'logs')),
                results_dir=Path(config_data.get('results_dir', 'results')),
                enable_debug_mode=config_data.get('enable_debug_mode', False)
            )
        except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
            logger.warning(f"Could not load config file {config_path}: {e}")
            logger.warning("Using default configuration")

    return SystemConfig()


def _plain(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: str(v) if isinstance(v, Path) else v for k, v in data.items()}


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file; the coordinator key is never written"""
    if config_path is None:
        config_path = Path("config.yaml")

    coordinator_data = _plain(asdict(config.coordinator))
    coordinator_data.pop('private_key', None)

    config_data = {
        'protocol': asdict(config.protocol),
        'prover': _plain(asdict(config.prover)),
        'coordinator': coordinator_data,
        'log_dir': str(config.log_dir),
        'results_dir': str(config.results_dir),
        'enable_debug_mode': config.enable_debug_mode
    }

    try:
        with open(config_path, 'w') as f:
            yaml.dump(config_data, f, default_flow_style=False)
    except OSError as e:
        logger.warning(f"Could not save config file {config_path}: {e}")
