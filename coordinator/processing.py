"""
Off-ledger replay of a poll's messages.

Every message is decrypted once. A forward pass in publication order then
decides which commands form a valid nonce chain for their voter: nonce ``n``
must follow the previous accepted nonce and be signed by the key authorised
at that point (the sign-up key for nonce 1, otherwise the key set by nonce
``n - 1``). Batches are replayed in reverse index order and only the first
accepted command met for each voter, i.e. the chronologically last one,
changes state. Every other message is a no-op.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ledger.vk_registry import CircuitParams
from primitives.command import MESSAGE_NONCE, Command, decrypt_message
from primitives.eddsa import Signature
from primitives.errors import (
    AuthenticationError,
    CommandPackingError,
    InvalidPublicKeyError,
    MalformedCiphertextError,
)
from primitives.keys import Keypair
from primitives.merkle import QuinaryTree
from primitives.structures import VOTE_OPTIONS, Ballot, Message, StateLeaf, blank_ballot_hash
from zk.zk_proofs import ProcessMessagesWitness, process_public_input_hash

logger = logging.getLogger(__name__)


class MessageStatus(Enum):
    APPLIED = "applied"
    SUPERSEDED = "superseded"
    INVALID_EPHEMERAL_KEY = "invalid_ephemeral_key"
    MALFORMED = "malformed"
    AUTHENTICATION_FAILED = "authentication_failed"
    WRONG_POLL = "wrong_poll"
    INVALID_STATE_INDEX = "invalid_state_index"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_NONCE = "invalid_nonce"
    INVALID_VOTE_OPTION = "invalid_vote_option"
    INSUFFICIENT_CREDITS = "insufficient_credits"


def vote_cost(weight: int, quadratic: bool = True) -> int:
    return weight * weight if quadratic else weight


@dataclass
class DecryptedMessage:
    index: int
    message: Message
    command: Optional[Command] = None
    signature: Optional[Signature] = None
    rejection: Optional[MessageStatus] = None
    error: Optional[str] = None
    status: Optional[MessageStatus] = None

    @property
    def accepted(self) -> bool:
        return self.command is not None and self.rejection is None


def decrypt_messages(ctx, messages: Sequence[Message], coordinator: Keypair) -> List[DecryptedMessage]:
    """Decrypt every message; failures are recorded, never raised"""
    results = []
    for index, message in enumerate(messages):
        entry = DecryptedMessage(index, message)
        try:
            entry.command, entry.signature = decrypt_message(ctx, message, coordinator)
        except InvalidPublicKeyError as e:
            entry.rejection, entry.error = MessageStatus.INVALID_EPHEMERAL_KEY, str(e)
        except (MalformedCiphertextError, CommandPackingError) as e:
            entry.rejection, entry.error = MessageStatus.MALFORMED, str(e)
        except AuthenticationError as e:
            entry.rejection, entry.error = MessageStatus.AUTHENTICATION_FAILED, str(e)
        if entry.rejection is not None:
            logger.debug(f"Message {index}: {entry.rejection.value} ({entry.error})")
        results.append(entry)
    return results


# ============================================================================
# STATE
# ============================================================================


class PollState:
    """State leaves, ballots and their trees as the replay mutates them"""

    def __init__(self, ctx, params: CircuitParams, state_leaves: Sequence[StateLeaf], quadratic: bool = True):
        self.ctx = ctx
        self.params = params
        self.quadratic = quadratic
        self.initial_leaves = list(state_leaves)
        self.state_leaves = list(state_leaves)
        self.ballots = [Ballot.blank(params.vote_option_tree_depth) for _ in state_leaves]

        self.state_tree = QuinaryTree(ctx, params.state_tree_depth)
        for leaf in self.state_leaves:
            self.state_tree.insert(leaf.hash(ctx))
        self.ballot_tree = QuinaryTree(
            ctx, params.state_tree_depth, blank_ballot_hash(ctx, params.vote_option_tree_depth))

    @property
    def num_sign_ups(self) -> int:
        return len(self.state_leaves) - 1

    def commitment(self) -> int:
        return self.ctx.hash([self.state_tree.root, self.ballot_tree.root])

    def apply(self, command: Command):
        """Replace the voter's ballot with this command's vote and charge its cost"""
        index = command.state_index
        initial = self.initial_leaves[index]
        votes = [0] * len(self.ballots[index].votes)
        votes[command.vote_option_index] = command.new_vote_weight
        cost = vote_cost(command.new_vote_weight, self.quadratic)

        leaf = StateLeaf(command.new_pub_key, initial.voice_credit_balance - cost, initial.timestamp)
        ballot = Ballot(command.nonce, tuple(votes))
        self.state_leaves[index] = leaf
        self.ballots[index] = ballot
        self.state_tree.update(index, leaf.hash(self.ctx))
        self.ballot_tree.update(index, ballot.hash(self.ctx, self.params.vote_option_tree_depth))


@dataclass
class BatchResult:
    batch_number: int
    start_index: int
    end_index: int
    current_commitment: int
    new_commitment: int
    witness: ProcessMessagesWitness
    statuses: Dict[int, MessageStatus] = field(default_factory=dict)


# ============================================================================
# REPLAY
# ============================================================================


class MessageReplay:

    def __init__(self, ctx, coordinator: Keypair, params: CircuitParams, poll_id: int,
                 state_leaves: Sequence[StateLeaf], messages: Sequence[Message], quadratic: bool = True):
        self.ctx = ctx
        self.coordinator = coordinator
        self.params = params
        self.poll_id = poll_id
        self.quadratic = quadratic
        self.state = PollState(ctx, params, state_leaves, quadratic)

        self.message_tree = QuinaryTree(ctx, params.message_tree_depth)
        for message in messages:
            self.message_tree.insert(message.hash(ctx))

        self.messages = decrypt_messages(ctx, messages, coordinator)
        self._validate_chains()

        self.batches_processed = 0
        self._applied: Set[int] = set()

    @property
    def num_messages(self) -> int:
        return len(self.messages)

    @property
    def batch_size(self) -> int:
        return 5 ** self.params.message_batch_depth

    @property
    def num_batches(self) -> int:
        return -(-self.num_messages // self.batch_size)

    def batch_bounds(self, batch_number: int) -> Tuple[int, int]:
        lo = (self.num_batches - 1 - batch_number) * self.batch_size
        return lo, min(lo + self.batch_size, self.num_messages)

    @property
    def done(self) -> bool:
        return self.batches_processed >= self.num_batches

    def statuses(self) -> Dict[int, MessageStatus]:
        return {entry.index: entry.status or entry.rejection for entry in self.messages}

    def _validate_chains(self):
        initial = self.state.initial_leaves
        chains: Dict[int, Tuple[int, object]] = {}
        for entry in self.messages:
            if entry.rejection is not None:
                continue
            command = entry.command
            index = command.state_index
            if command.poll_id != self.poll_id:
                entry.rejection = MessageStatus.WRONG_POLL
            elif not 1 <= index <= self.state.num_sign_ups:
                entry.rejection = MessageStatus.INVALID_STATE_INDEX
            else:
                last_nonce, key = chains.get(index, (0, initial[index].public_key))
                if not command.verify_signature(self.ctx, entry.signature, key):
                    entry.rejection = MessageStatus.INVALID_SIGNATURE
                elif command.nonce != last_nonce + 1:
                    entry.rejection = MessageStatus.INVALID_NONCE
                elif command.vote_option_index >= len(VOTE_OPTIONS):
                    entry.rejection = MessageStatus.INVALID_VOTE_OPTION
                elif vote_cost(command.new_vote_weight, self.quadratic) > initial[index].voice_credit_balance:
                    entry.rejection = MessageStatus.INSUFFICIENT_CREDITS
                else:
                    chains[index] = (command.nonce, command.new_pub_key)
            if entry.rejection is not None:
                logger.debug(f"Message {entry.index}: {entry.rejection.value}")

    def process_batch(self) -> BatchResult:
        """Replay the next batch (from the end) and build its witness"""
        if self.done:
            raise RuntimeError("Every batch has been replayed")

        batch_number = self.batches_processed
        lo, hi = self.batch_bounds(batch_number)
        size = self.batch_size
        depth = self.params.state_tree_depth
        vo_depth = self.params.vote_option_tree_depth
        padding = Message.padding()

        current_commitment = self.state.commitment()
        input_state_root = self.state.state_tree.root
        input_ballot_root = self.state.ballot_tree.root

        wire = [None] * size
        state_leaves = [None] * size
        ballots = [None] * size
        vote_weights = [0] * size
        state_proofs = [None] * size
        state_indices = [None] * size
        ballot_proofs = [None] * size
        ballot_indices = [None] * size
        msg_proofs = [None] * size
        msg_indices = [None] * size
        statuses: Dict[int, MessageStatus] = {}

        for position in reversed(range(size)):
            message_index = lo + position
            entry = self.messages[message_index] if message_index < hi else None
            message = entry.message if entry else padding

            target = 0
            if entry is not None and entry.accepted:
                if entry.command.state_index not in self._applied:
                    entry.status = MessageStatus.APPLIED
                    target = entry.command.state_index
                else:
                    entry.status = MessageStatus.SUPERSEDED
            elif entry is not None:
                entry.status = entry.rejection

            leaf = self.state.state_leaves[target]
            ballot = self.state.ballots[target]
            state_path = self.state.state_tree.path(target)
            ballot_path = self.state.ballot_tree.path(target)
            msg_path = self.message_tree.path(min(message_index, self.message_tree.capacity - 1))

            wire[position] = message.as_wire()
            state_leaves[position] = leaf.as_list()
            ballots[position] = [ballot.nonce, ballot.vote_option_root(self.ctx, vo_depth)]
            if entry is not None and entry.command is not None:
                option = entry.command.vote_option_index
                if option < len(ballot.votes):
                    vote_weights[position] = ballot.votes[option]
            state_proofs[position] = state_path.path_elements
            state_indices[position] = state_path.path_indices
            ballot_proofs[position] = ballot_path.path_elements
            ballot_indices[position] = ballot_path.path_indices
            msg_proofs[position] = msg_path.path_elements
            msg_indices[position] = msg_path.path_indices

            if target:
                self.state.apply(entry.command)
                self._applied.add(target)
            if entry is not None:
                statuses[message_index] = entry.status

        new_commitment = self.state.commitment()
        coordinator_pub_key_hash = self.coordinator.public_key.hash(self.ctx)
        input_hash = process_public_input_hash(
            current_state_commitment=current_commitment,
            new_state_commitment=new_commitment,
            message_root=self.message_tree.root,
            coordinator_pub_key_hash=coordinator_pub_key_hash,
            batch_start_index=lo,
            batch_end_index=hi,
            num_sign_ups=self.state.num_sign_ups,
            max_vote_options=5 ** vo_depth,
        )

        witness = ProcessMessagesWitness(
            input_hash=input_hash,
            current_state_commitment=current_commitment,
            new_state_commitment=new_commitment,
            input_state_root=input_state_root,
            output_state_root=self.state.state_tree.root,
            input_ballot_root=input_ballot_root,
            output_ballot_root=self.state.ballot_tree.root,
            input_message_root=self.message_tree.root,
            coordinator_pub_key_hash=coordinator_pub_key_hash,
            batch_start_index=lo,
            batch_end_index=hi,
            num_sign_ups=self.state.num_sign_ups,
            coordinator_sk=self.coordinator.private_key,
            messages=[w[:-2] for w in wire],
            enc_pub_keys=[w[-2:] for w in wire],
            msg_nonces=[MESSAGE_NONCE] * size,
            state_leaves=state_leaves,
            ballots=ballots,
            ballot_vote_weights=vote_weights,
            state_proofs=state_proofs,
            state_path_indices=state_indices,
            ballot_proofs=ballot_proofs,
            ballot_path_indices=ballot_indices,
            msg_proofs=msg_proofs,
            msg_path_indices=msg_indices,
        )

        self.batches_processed += 1
        applied = sum(1 for s in statuses.values() if s is MessageStatus.APPLIED)
        logger.info(
            f"Replayed messages [{lo}, {hi}) as batch {batch_number}: {applied} applied, "
            f"{len(statuses) - applied} no-ops")
        return BatchResult(batch_number, lo, hi, current_commitment, new_commitment, witness, statuses)

    def run(self) -> List[BatchResult]:
        results = []
        while not self.done:
            results.append(self.process_batch())
        return results
