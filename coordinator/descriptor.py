"""
Deployment descriptor: registry and verifier addresses plus the coordinator
public key the deployment declared. The coordinator re-derives its public key
from the secret key and flags a descriptor that no longer matches.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from primitives.keys import Keypair, PublicKey

from .errors import StaleDescriptorError

logger = logging.getLogger(__name__)


@dataclass
class DeploymentDescriptor:
    network: str
    deploy_block: int
    registry_address: str
    vk_registry_address: str
    process_verifier_address: str
    tally_verifier_address: str
    coordinator_pub_key: PublicKey
    state_tree_depth: int
    message_tree_depth: int

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "DeploymentDescriptor":
        v2 = data.get('v2') or {}
        try:
            return cls(
                network=data.get('network', 'unknown'),
                deploy_block=int(data.get('deployBlock', 0)),
                registry_address=v2['maci'],
                vk_registry_address=v2.get('vkRegistry', ''),
                process_verifier_address=v2.get('msgProcessorVerifier', ''),
                tally_verifier_address=v2.get('tallyVerifier', ''),
                coordinator_pub_key=PublicKey(int(v2['coordinatorPubKeyX']), int(v2['coordinatorPubKeyY'])),
                state_tree_depth=int(v2.get('stateTreeDepth', 0)),
                message_tree_depth=int(v2.get('messageTreeDepth', 0)),
            )
        except KeyError as e:
            raise ValueError(f"Deployment descriptor missing field {e}") from e

    @classmethod
    def load(cls, path: Path) -> "DeploymentDescriptor":
        with open(path, 'r') as f:
            return cls.from_json(json.load(f))

    def to_json(self) -> Dict[str, Any]:
        return {
            'network': self.network,
            'deployBlock': self.deploy_block,
            'v2': {
                'maci': self.registry_address,
                'vkRegistry': self.vk_registry_address,
                'msgProcessorVerifier': self.process_verifier_address,
                'tallyVerifier': self.tally_verifier_address,
                'coordinatorPubKeyX': str(self.coordinator_pub_key.x),
                'coordinatorPubKeyY': str(self.coordinator_pub_key.y),
                'stateTreeDepth': self.state_tree_depth,
                'messageTreeDepth': self.message_tree_depth,
            },
        }

    def save(self, path: Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(self.to_json(), f, indent=2)


@dataclass(frozen=True)
class DescriptorCheck:
    matches: bool
    declared: PublicKey
    derived: PublicKey


def check_coordinator_key(descriptor: DeploymentDescriptor, coordinator: Keypair,
                          strict: bool = False) -> DescriptorCheck:
    declared = descriptor.coordinator_pub_key
    derived = coordinator.public_key
    check = DescriptorCheck(declared == derived, declared, derived)
    if not check.matches:
        message = (f"Descriptor for {descriptor.network} declares coordinator key "
                   f"{declared.serialize()} but the secret key derives {derived.serialize()}")
        logger.warning(message)
        if strict:
            raise StaleDescriptorError(message)
    else:
        logger.info(f"Descriptor coordinator key matches ({descriptor.network})")
    return check


def load_and_check(path: Path, coordinator: Keypair, strict: bool = False) -> Optional[DescriptorCheck]:
    path = Path(path)
    if not path.exists():
        logger.warning(f"Deployment descriptor not found: {path}")
        return None
    return check_coordinator_key(DeploymentDescriptor.load(path), coordinator, strict)
