"""
Ledger-side proof verifiers: batched message processing and the tally.

Neither object recomputes the state transition. Each checks a Groth16 proof
against the SHA256 public-input hash of the values the ledger already holds,
then advances a cursor.
"""

import logging
from dataclasses import dataclass
from typing import Tuple

from primitives.field import is_field_element
from primitives.merkle import compute_root
from primitives.structures import ABSTAIN, AGAINST, FOR
from zk.zk_proofs import Groth16Proof, ProofType, process_public_input_hash, tally_public_input_hash

from .chain import Ledger, ReentrancyGuard
from .errors import AccessControlError, FieldRangeError, IntegrityViolationError, PhaseViolationError

logger = logging.getLogger(__name__)


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


class _CoordinatorOnly:

    def _only_coordinator(self, caller: str):
        if caller != self.poll.coordinator_address:
            raise AccessControlError("Only the coordinator may call this")

    def _verify(self, proof_type: ProofType, input_hash: int, proof: Groth16Proof) -> bool:
        vk = self.ledger.at(self.verifier_refs.vk_registry_address).get(self.poll.params, proof_type)
        verifier = self.ledger.at(self.verifier_refs.verifier_address)
        return verifier.verify(vk, [input_hash], proof)


# ============================================================================
# MESSAGE PROCESSOR
# ============================================================================


class MessageProcessor(_CoordinatorOnly):

    def __init__(self, ctx, ledger: Ledger, poll, verifier_refs):
        self.ctx = ctx
        self.ledger = ledger
        self.poll = poll
        self.verifier_refs = verifier_refs
        self.address = ledger.deploy(f"poll{poll.poll_id}.processor", self)

        self.num_batches_processed = 0
        self.processing_complete = False
        self.sb_commitment = None
        self._guard = ReentrancyGuard(f"processor {poll.poll_id}")

    @property
    def batch_size(self) -> int:
        return 5 ** self.poll.params.message_batch_depth

    @property
    def num_batches(self) -> int:
        return _ceil_div(self.poll.num_messages, self.batch_size)

    def batch_bounds(self, batch_number: int) -> Tuple[int, int]:
        """Message index range of the ``batch_number``-th batch, counting from the end"""
        lo = (self.num_batches - 1 - batch_number) * self.batch_size
        return lo, min(lo + self.batch_size, self.poll.num_messages)

    def current_state_commitment(self) -> int:
        if self.num_batches_processed == 0:
            return self.poll.current_state_commitment
        return self.sb_commitment

    def public_input_hash(self, new_state_commitment: int) -> int:
        lo, hi = self.batch_bounds(self.num_batches_processed)
        return process_public_input_hash(
            current_state_commitment=self.current_state_commitment(),
            new_state_commitment=new_state_commitment,
            message_root=self.poll.message_root,
            coordinator_pub_key_hash=self.poll.coordinator_pub_key_hash,
            batch_start_index=lo,
            batch_end_index=hi,
            num_sign_ups=self.poll.num_sign_ups,
            max_vote_options=self.poll.max_vote_options,
        )

    def process_messages(self, new_state_commitment: int, proof: Groth16Proof, caller: str):
        with self._guard.enter("process_messages"):
            self._only_coordinator(caller)
            if not (self.poll.state_merged and self.poll.message_merged):
                raise PhaseViolationError("State and message trees must both be merged")
            if self.processing_complete:
                raise PhaseViolationError("Processing is already complete")
            if self.num_batches_processed >= self.num_batches:
                raise PhaseViolationError("Every batch has been processed")
            if not is_field_element(new_state_commitment):
                raise FieldRangeError("State commitment is not a field element")

            input_hash = self.public_input_hash(new_state_commitment)
            if not self._verify(ProofType.PROCESS_MESSAGES, input_hash, proof):
                raise IntegrityViolationError(
                    f"Invalid process proof for batch {self.num_batches_processed}")

            self.sb_commitment = int(new_state_commitment)
            self.num_batches_processed += 1
            logger.info(
                f"Poll {self.poll.poll_id}: batch {self.num_batches_processed}/{self.num_batches} verified")

    def complete_processing(self, caller: str):
        with self._guard.enter("complete_processing"):
            self._only_coordinator(caller)
            if self.processing_complete:
                raise PhaseViolationError("Processing is already complete")
            if self.num_batches_processed == 0:
                raise PhaseViolationError("No batches processed")
            if self.num_batches_processed < self.num_batches:
                raise PhaseViolationError(
                    f"{self.num_batches - self.num_batches_processed} batches remain")
            self.processing_complete = True
            logger.info(f"Poll {self.poll.poll_id}: processing complete")


# ============================================================================
# TALLY
# ============================================================================


@dataclass(frozen=True)
class TallyResult:
    per_option_votes: Tuple[int, ...]
    for_votes: int
    against_votes: int
    abstain_votes: int
    total_voters: int
    results_root: int
    total_spent: int
    per_option_spent_root: int
    verified: bool

    def to_dict(self):
        return {
            'per_option_votes': list(self.per_option_votes),
            'for': self.for_votes,
            'against': self.against_votes,
            'abstain': self.abstain_votes,
            'total_voters': self.total_voters,
            'results_root': str(self.results_root),
            'total_spent': self.total_spent,
            'per_option_spent_root': str(self.per_option_spent_root),
            'verified': self.verified,
        }


class Tally(_CoordinatorOnly):

    def __init__(self, ctx, ledger: Ledger, poll, processor: MessageProcessor, verifier_refs):
        self.ctx = ctx
        self.ledger = ledger
        self.poll = poll
        self.processor = processor
        self.verifier_refs = verifier_refs
        self.address = ledger.deploy(f"poll{poll.poll_id}.tally", self)

        self.tally_commitment = 0
        self.tally_batch_num = 0
        self.results = None
        self._guard = ReentrancyGuard(f"tally {poll.poll_id}")

    @property
    def batch_size(self) -> int:
        return self.poll.params.tally_batch_size

    @property
    def num_batches(self) -> int:
        # state index 0 is the blank leaf and is tallied like any other
        return _ceil_div(self.poll.num_sign_ups + 1, self.batch_size)

    def is_tallied(self) -> bool:
        return self.processor.processing_complete and self.tally_batch_num >= self.num_batches

    def public_input_hash(self, new_tally_commitment: int) -> int:
        return tally_public_input_hash(
            state_commitment=self.processor.sb_commitment,
            current_tally_commitment=self.tally_commitment,
            new_tally_commitment=new_tally_commitment,
            batch_start_index=self.tally_batch_num * self.batch_size,
            num_sign_ups=self.poll.num_sign_ups,
        )

    def tally_votes(self, new_tally_commitment: int, proof: Groth16Proof, caller: str):
        with self._guard.enter("tally_votes"):
            self._only_coordinator(caller)
            if not self.processor.processing_complete:
                raise PhaseViolationError("Messages have not been processed")
            if self.tally_batch_num >= self.num_batches:
                raise PhaseViolationError("Every tally batch has been verified")
            if not is_field_element(new_tally_commitment):
                raise FieldRangeError("Tally commitment is not a field element")

            input_hash = self.public_input_hash(new_tally_commitment)
            if not self._verify(ProofType.TALLY_VOTES, input_hash, proof):
                raise IntegrityViolationError(f"Invalid tally proof for batch {self.tally_batch_num}")

            self.tally_commitment = int(new_tally_commitment)
            self.tally_batch_num += 1
            logger.info(f"Poll {self.poll.poll_id}: tally batch {self.tally_batch_num}/{self.num_batches} verified")

    def publish_results(self, for_votes: int, against_votes: int, abstain_votes: int,
                        total_voters: int, results_root: int, total_spent: int,
                        per_option_spent_root: int, caller: str) -> TallyResult:
        with self._guard.enter("publish_results"):
            self._only_coordinator(caller)
            if self.results is not None:
                raise PhaseViolationError("Results are already published")
            if not self.is_tallied():
                raise PhaseViolationError("Tally is not complete")
            values = [for_votes, against_votes, abstain_votes, total_voters,
                      results_root, total_spent, per_option_spent_root]
            if not all(is_field_element(v) for v in values):
                raise FieldRangeError("Results must be field elements")
            if total_voters > self.poll.num_sign_ups:
                raise IntegrityViolationError(
                    f"{total_voters} voters exceed {self.poll.num_sign_ups} sign-ups")

            per_option = [0, 0, 0]
            per_option[AGAINST] = int(against_votes)
            per_option[FOR] = int(for_votes)
            per_option[ABSTAIN] = int(abstain_votes)
            expected_root = compute_root(self.ctx, per_option, self.poll.params.vote_option_tree_depth)
            if int(results_root) != expected_root:
                raise IntegrityViolationError("Results root does not match the published votes")
            commitment = self.ctx.hash([results_root, total_spent, per_option_spent_root])
            if commitment != self.tally_commitment:
                raise IntegrityViolationError("Published results do not match the tally commitment")

            self.results = TallyResult(
                per_option_votes=tuple(per_option),
                for_votes=int(for_votes),
                against_votes=int(against_votes),
                abstain_votes=int(abstain_votes),
                total_voters=int(total_voters),
                results_root=int(results_root),
                total_spent=int(total_spent),
                per_option_spent_root=int(per_option_spent_root),
                verified=True,
            )
            logger.info(
                f"Poll {self.poll.poll_id}: results published "
                f"(for={for_votes}, against={against_votes}, abstain={abstain_votes})")
            return self.results
