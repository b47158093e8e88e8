"""Verifying keys per circuit parameter set."""

import logging
from dataclasses import dataclass
from typing import Dict, Tuple

from zk.zk_proofs import ProofType, VerifyingKey

from .errors import AccessControlError, InputValidationError, PhaseViolationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CircuitParams:
    state_tree_depth: int
    message_tree_depth: int
    message_batch_depth: int
    vote_option_tree_depth: int
    tally_batch_size: int

    def signature(self) -> Tuple[int, ...]:
        return (self.state_tree_depth, self.message_tree_depth, self.message_batch_depth,
                self.vote_option_tree_depth, self.tally_batch_size)


class VkRegistry:

    def __init__(self, owner: str):
        self.owner = owner
        self._keys: Dict[Tuple[Tuple[int, ...], ProofType], VerifyingKey] = {}

    def set_verifying_keys(self, params: CircuitParams, process_vk: VerifyingKey,
                           tally_vk: VerifyingKey, caller: str):
        if caller != self.owner:
            raise AccessControlError("Only the owner may register verifying keys")
        signature = params.signature()
        if self.has_keys(params):
            raise PhaseViolationError(f"Verifying keys already registered for {signature}")
        self._keys[(signature, ProofType.PROCESS_MESSAGES)] = process_vk
        self._keys[(signature, ProofType.TALLY_VOTES)] = tally_vk
        logger.info(f"Registered verifying keys for parameters {signature}")

    def has_keys(self, params: CircuitParams) -> bool:
        signature = params.signature()
        return all((signature, proof_type) in self._keys for proof_type in ProofType)

    def get(self, params: CircuitParams, proof_type: ProofType) -> VerifyingKey:
        try:
            return self._keys[(params.signature(), proof_type)]
        except KeyError:
            raise InputValidationError(
                f"No {proof_type.value} verifying key for parameters {params.signature()}") from None
