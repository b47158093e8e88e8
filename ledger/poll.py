"""
Poll: message intake during the voting window and the merge phase.

The phase is never stored; it is derived from the clock, the merge flags and
the published results, so it can only move forward.
"""

import logging
from enum import Enum
from typing import Optional

from primitives.field import is_field_element
from primitives.keys import PublicKey
from primitives.merkle import ARITY, zero_hashes
from primitives.structures import Message, blank_ballot_hash

from .acc_queue import AccQueue
from .chain import Ledger, MessagePublishedEvent, ReentrancyGuard
from .errors import FieldRangeError, InputValidationError, InvalidPublicKeyError, PhaseViolationError
from .vk_registry import CircuitParams

logger = logging.getLogger(__name__)


class PollPhase(Enum):
    VOTING = "voting"
    MERGING = "merging"
    PROCESSING = "processing"
    FINALIZED = "finalized"


class Poll:

    def __init__(self, ctx, ledger: Ledger, registry, address: str, poll_id: int, title: str,
                 duration: int, coordinator_pub_key: PublicKey, coordinator_address: str,
                 params: CircuitParams, quadratic: bool = True):
        self.ctx = ctx
        self.ledger = ledger
        self.registry = registry
        self.address = address
        self.poll_id = poll_id
        self.title = title
        self.deploy_time = ledger.now()
        self.duration = duration
        self.coordinator_pub_key = coordinator_pub_key
        self.coordinator_pub_key_hash = coordinator_pub_key.hash(ctx)
        self.coordinator_address = coordinator_address
        self.params = params
        self.quadratic = quadratic
        self.processor = None
        self.tally = None

        self.message_aq = AccQueue(ctx, params.message_batch_depth, address, name=f"poll{poll_id}.message_aq")
        self.state_merged = False
        self.num_sign_ups: Optional[int] = None
        self.merged_state_root: Optional[int] = None
        self.current_state_commitment: Optional[int] = None
        self.message_root: Optional[int] = None
        self.num_messages: Optional[int] = None
        self._guard = ReentrancyGuard(f"poll {poll_id}")

        # padding message at index 0 guarantees at least one processing batch
        padding = Message.padding()
        self.message_aq.enqueue(padding.hash(ctx), address)
        ledger.emit(MessagePublishedEvent(address, 0, padding.data, padding.enc_pub_key))

    # ------------------------------------------------------------------
    # phase
    # ------------------------------------------------------------------

    @property
    def deadline(self) -> int:
        return self.deploy_time + self.duration

    def voting_open(self) -> bool:
        return self.ledger.now() < self.deadline

    @property
    def message_merged(self) -> bool:
        return self.message_aq.merged and self.message_root is not None

    @property
    def phase(self) -> PollPhase:
        if self.tally is not None and self.tally.results is not None:
            return PollPhase.FINALIZED
        if self.voting_open():
            return PollPhase.VOTING
        if not (self.state_merged and self.message_merged):
            return PollPhase.MERGING
        return PollPhase.PROCESSING

    def _require_voting_ended(self):
        if self.voting_open():
            raise PhaseViolationError(f"Poll {self.poll_id}: voting period has not ended")

    @property
    def message_capacity(self) -> int:
        return ARITY ** self.params.message_tree_depth

    @property
    def max_vote_options(self) -> int:
        return ARITY ** self.params.vote_option_tree_depth

    # ------------------------------------------------------------------
    # voting
    # ------------------------------------------------------------------

    def publish_message(self, message: Message) -> int:
        with self._guard.enter("publish_message"):
            if not self.voting_open():
                raise PhaseViolationError(f"Poll {self.poll_id}: voting period is over")
            values = list(message.data) + message.enc_pub_key.as_list()
            if not all(is_field_element(v) for v in values):
                raise FieldRangeError("Message elements must be field elements")
            if not self.ctx.babyjub.is_valid_public_key(message.enc_pub_key.as_tuple()):
                raise InvalidPublicKeyError("Ephemeral key is the identity or off the curve")
            if self.message_aq.num_leaves >= self.message_capacity:
                raise InputValidationError(f"Poll {self.poll_id}: message tree is full")

            index = self.message_aq.enqueue(message.hash(self.ctx), self.address)
            self.ledger.emit(MessagePublishedEvent(
                self.address, index, tuple(int(v) for v in message.data), message.enc_pub_key))
            logger.debug(f"Poll {self.poll_id}: message {index} published")
            return index

    # ------------------------------------------------------------------
    # merging
    # ------------------------------------------------------------------

    def merge_state_aq_sub_roots(self, num_sub_roots: int = 0) -> bool:
        with self._guard.enter("merge_state_aq_sub_roots"):
            self._require_voting_ended()
            if self.state_merged:
                raise PhaseViolationError(f"Poll {self.poll_id}: state tree already merged")
            return self.registry.merge_state_aq_sub_roots(num_sub_roots, self.address)

    def merge_state_aq(self) -> int:
        with self._guard.enter("merge_state_aq"):
            self._require_voting_ended()
            if self.state_merged:
                raise PhaseViolationError(f"Poll {self.poll_id}: state tree already merged")
            state_root = self.registry.merge_state_aq(self.address)

            depth = self.params.state_tree_depth
            empty_ballot_root = zero_hashes(
                self.ctx, depth, blank_ballot_hash(self.ctx, self.params.vote_option_tree_depth))[depth]

            self.merged_state_root = state_root
            self.num_sign_ups = self.registry.num_sign_ups
            self.current_state_commitment = self.ctx.hash([state_root, empty_ballot_root])
            self.state_merged = True
            logger.info(f"Poll {self.poll_id}: state merged with {self.num_sign_ups} sign-ups")
            return state_root

    def merge_message_aq_sub_roots(self, num_sub_roots: int = 0) -> bool:
        with self._guard.enter("merge_message_aq_sub_roots"):
            self._require_voting_ended()
            if self.message_merged:
                raise PhaseViolationError(f"Poll {self.poll_id}: message tree already merged")
            return self.message_aq.merge_sub_roots(num_sub_roots, self.address)

    def merge_message_aq(self) -> int:
        with self._guard.enter("merge_message_aq"):
            self._require_voting_ended()
            if self.message_merged:
                raise PhaseViolationError(f"Poll {self.poll_id}: message tree already merged")
            root = self.message_aq.merge(self.params.message_tree_depth, self.address)
            self.message_root = root
            self.num_messages = self.message_aq.num_leaves
            logger.info(f"Poll {self.poll_id}: message tree merged with {self.num_messages} messages")
            return root
