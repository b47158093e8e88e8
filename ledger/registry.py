"""
Voter registry: sign-up into the shared state accumulator and poll deployment.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from primitives.field import is_field_element
from primitives.keys import PublicKey
from primitives.merkle import ARITY
from primitives.structures import BLANK_STATE_LEAF, StateLeaf

from .acc_queue import AccQueue
from .chain import DeployPollEvent, Ledger, SignUpEvent, require_address
from .errors import (
    AccessControlError,
    FieldRangeError,
    InputValidationError,
    InvalidPublicKeyError,
    PhaseViolationError,
    ZeroBatchCountError,
    ZeroDurationError,
    ZeroTreeDepthError,
)
from .poll import Poll
from .processor import MessageProcessor, Tally
from .vk_registry import CircuitParams, VkRegistry

logger = logging.getLogger(__name__)


# ============================================================================
# SIGN-UP COLLABORATORS
# ============================================================================


class FreeForAllGatekeeper:
    """Admits every sign-up"""

    def register(self, pub_key: PublicKey, gate_data: bytes):
        return None


class ConstantVoiceCreditProxy:
    """Grants every voter the same voice-credit balance"""

    def __init__(self, amount: int = 100):
        if amount <= 0:
            raise InputValidationError("Voice credit amount must be positive")
        self.amount = amount

    def get_voice_credits(self, pub_key: PublicKey, data: bytes) -> int:
        return self.amount


@dataclass(frozen=True)
class VerifierRefs:
    verifier_address: str
    vk_registry_address: str


# ============================================================================
# REGISTRY
# ============================================================================


class Registry:

    def __init__(self, ctx, ledger: Ledger, owner: str, state_tree_depth: int = 10,
                 state_tree_sub_depth: int = 2, gatekeeper=None, voice_credit_proxy=None):
        require_address(owner, "owner")
        if state_tree_depth <= 0 or state_tree_sub_depth <= 0:
            raise ZeroTreeDepthError("State tree depths must be positive")
        if state_tree_sub_depth > state_tree_depth:
            raise InputValidationError("State subtree depth exceeds the state tree depth")

        self.ctx = ctx
        self.ledger = ledger
        self.owner = owner
        self.state_tree_depth = state_tree_depth
        self.gatekeeper = gatekeeper or FreeForAllGatekeeper()
        self.voice_credit_proxy = voice_credit_proxy or ConstantVoiceCreditProxy()
        self.address = ledger.deploy("registry", self)

        self.state_aq = AccQueue(ctx, state_tree_sub_depth, self.address, name="state_aq")
        self.state_aq.enqueue(BLANK_STATE_LEAF.hash(ctx), self.address)

        self.num_sign_ups = 0
        self.polls: List[Poll] = []
        self._poll_addresses: Dict[str, Poll] = {}

    @property
    def state_capacity(self) -> int:
        return ARITY ** self.state_tree_depth

    # ------------------------------------------------------------------
    # sign-up
    # ------------------------------------------------------------------

    def sign_up(self, pub_key: PublicKey, gate_data: bytes = b"", credit_proxy_data: bytes = b"") -> int:
        """Register a voter; returns its state index (1-based, 0 is the blank leaf)"""
        if not (is_field_element(pub_key.x) and is_field_element(pub_key.y)):
            raise FieldRangeError("Public key coordinates must be field elements")
        if not self.ctx.babyjub.is_valid_public_key(pub_key.as_tuple()):
            raise InvalidPublicKeyError(f"Invalid public key: ({pub_key.x}, {pub_key.y})")
        if self.state_aq.num_leaves >= self.state_capacity:
            raise InputValidationError("State tree is full")
        if self.state_aq.merged:
            raise PhaseViolationError("State tree is merged for a poll; sign-ups reopen at the next poll")

        self.gatekeeper.register(pub_key, gate_data)
        credits = self.voice_credit_proxy.get_voice_credits(pub_key, credit_proxy_data)
        if not is_field_element(credits):
            raise FieldRangeError(f"Voice credit balance {credits} is not a field element")

        timestamp = self.ledger.now()
        leaf = StateLeaf(pub_key, credits, timestamp)
        state_index = self.state_aq.enqueue(leaf.hash(self.ctx), self.address)
        self.num_sign_ups += 1

        self.ledger.emit(SignUpEvent(state_index, pub_key, credits, timestamp))
        logger.info(f"Sign-up {state_index} with {credits} voice credits")
        return state_index

    # ------------------------------------------------------------------
    # polls
    # ------------------------------------------------------------------

    def deploy_poll(self, title: str, duration: int, coordinator_pub_key: PublicKey,
                    coordinator_address: str, verifier_refs: VerifierRefs,
                    message_tree_depth: int, message_batch_depth: int = 1,
                    vote_option_tree_depth: int = 1, tally_batch_size: int = 5,
                    quadratic: bool = True, caller: Optional[str] = None) -> int:
        if caller != self.owner:
            raise AccessControlError("Only the owner may deploy polls")
        if duration <= 0:
            raise ZeroDurationError("Poll duration must be positive")
        if message_tree_depth <= 0 or message_batch_depth <= 0 or vote_option_tree_depth <= 0:
            raise ZeroTreeDepthError("Message and vote option tree depths must be positive")
        require_address(coordinator_address, "coordinator address")
        require_address(verifier_refs.verifier_address, "verifier address")
        require_address(verifier_refs.vk_registry_address, "verifying key registry address")
        if not self.ctx.babyjub.is_valid_public_key(coordinator_pub_key.as_tuple()):
            raise InvalidPublicKeyError("Coordinator public key is zero, the identity or off the curve")
        if tally_batch_size <= 0:
            raise ZeroBatchCountError("Tally batch size must be positive")
        if message_batch_depth > message_tree_depth:
            raise InputValidationError("Message batch depth exceeds the message tree depth")

        params = CircuitParams(self.state_tree_depth, message_tree_depth, message_batch_depth,
                               vote_option_tree_depth, tally_batch_size)
        vk_registry = self.ledger.at(verifier_refs.vk_registry_address)
        if not isinstance(vk_registry, VkRegistry) or not vk_registry.has_keys(params):
            raise InputValidationError(f"No verifying keys registered for {params.signature()}")
        self.ledger.at(verifier_refs.verifier_address)

        if self.state_aq.merged:
            self.state_aq.reset_merge(self.address)

        poll_id = len(self.polls)
        poll_address = self.ledger.new_address("poll")
        poll = Poll(
            ctx=self.ctx,
            ledger=self.ledger,
            registry=self,
            address=poll_address,
            poll_id=poll_id,
            title=title,
            duration=duration,
            coordinator_pub_key=coordinator_pub_key,
            coordinator_address=coordinator_address,
            params=params,
            quadratic=quadratic,
        )
        self.ledger.register(poll_address, poll)

        processor = MessageProcessor(self.ctx, self.ledger, poll, verifier_refs)
        poll.processor = processor
        tally = Tally(self.ctx, self.ledger, poll, processor, verifier_refs)
        poll.tally = tally

        self.polls.append(poll)
        self._poll_addresses[poll_address] = poll
        self.ledger.emit(DeployPollEvent(poll_id, poll_address, processor.address, tally.address))
        logger.info(f"Deployed poll {poll_id} '{title}' at {poll_address} for {duration}s")
        return poll_id

    def get_poll(self, poll_id: int) -> Poll:
        if not 0 <= poll_id < len(self.polls):
            raise InputValidationError(f"Unknown poll {poll_id}")
        return self.polls[poll_id]

    def _only_poll(self, caller: str):
        if caller not in self._poll_addresses:
            raise AccessControlError("Only a deployed poll may merge the state tree")

    def merge_state_aq_sub_roots(self, num_sub_roots: int, caller: str) -> bool:
        self._only_poll(caller)
        return self.state_aq.merge_sub_roots(num_sub_roots, self.address)

    def merge_state_aq(self, caller: str) -> int:
        """Merge the state tree; a tree already merged for this round keeps its root"""
        self._only_poll(caller)
        if self.state_aq.merged:
            return self.state_aq.root
        return self.state_aq.merge(self.state_tree_depth, self.address)
