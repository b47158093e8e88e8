"""
Coordinator pipeline
====================
Drives one poll from a closed voting window to published results:

1. merge the state and message accumulators (steps already done are skipped)
2. fetch sign-up and message events
3. rebuild the state, ballot and message trees
4. decrypt and replay messages, batch by batch from the end
5. build each batch witness and prove it
6. submit ``process_messages`` and ``complete_processing``
7. tally the final state in batches, proving each one
8. publish the plaintext results

Batches of one poll run in order because each witness starts from the
previous batch's state commitment. Independent polls run concurrently: tree
rebuilding, replay and tally run in the default executor, off the event loop.
"""

import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional

from ledger.chain import Ledger, MessagePublishedEvent, SignUpEvent
from ledger.errors import PhaseViolationError
from ledger.poll import Poll, PollPhase
from ledger.processor import TallyResult
from primitives.keys import Keypair
from primitives.structures import BLANK_STATE_LEAF, Message, StateLeaf
from utils.utils import PerformanceMonitor
from zk.zk_proofs import ProofType, Prover

from .errors import ProcessingError
from .processing import MessageReplay, MessageStatus
from .tally import TallyBuilder

logger = logging.getLogger(__name__)


# ============================================================================
# EVENT FETCHING
# ============================================================================


def fetch_state_leaves(ledger: Ledger, num_sign_ups: int) -> List[StateLeaf]:
    """Blank leaf followed by the first ``num_sign_ups`` registered voters"""
    leaves = [BLANK_STATE_LEAF]
    events = sorted(ledger.get_events(SignUpEvent), key=lambda e: e.state_index)
    for event in events[:num_sign_ups]:
        if event.state_index != len(leaves):
            raise ProcessingError(f"Sign-up events skip state index {len(leaves)}")
        leaves.append(StateLeaf(event.pub_key, event.voice_credit_balance, event.timestamp))
    if len(leaves) != num_sign_ups + 1:
        raise ProcessingError(f"Found {len(leaves) - 1} sign-ups, expected {num_sign_ups}")
    return leaves


def fetch_messages(ledger: Ledger, poll: Poll) -> List[Message]:
    events = sorted(
        ledger.get_events(MessagePublishedEvent, poll_address=poll.address),
        key=lambda e: e.index)
    messages = []
    for event in events:
        if event.index != len(messages):
            raise ProcessingError(f"Message events skip index {len(messages)}")
        messages.append(Message(tuple(event.data), event.enc_pub_key))
    return messages


# ============================================================================
# COORDINATOR
# ============================================================================


class Coordinator:
    """Holds the coordinator secret key and processes its polls"""

    def __init__(self, ctx, ledger: Ledger, registry, keypair: Keypair, address: str,
                 prover: Prover, monitor: Optional[PerformanceMonitor] = None,
                 sub_roots_per_step: int = 0):
        self.ctx = ctx
        self.ledger = ledger
        self.registry = registry
        self.keypair = keypair
        self.address = address
        self.prover = prover
        self.monitor = monitor or PerformanceMonitor()
        self.sub_roots_per_step = sub_roots_per_step
        self.message_statuses: Dict[int, Dict[int, MessageStatus]] = {}
        self.failures: Dict[int, BaseException] = {}
        self._poll_locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, poll_id: int) -> asyncio.Lock:
        if poll_id not in self._poll_locks:
            self._poll_locks[poll_id] = asyncio.Lock()
        return self._poll_locks[poll_id]

    async def merge_accumulators(self, poll: Poll):
        with self.monitor.start_operation("merge"):
            if not poll.state_merged:
                while not poll.merge_state_aq_sub_roots(self.sub_roots_per_step):
                    await asyncio.sleep(0)
                poll.merge_state_aq()
            if not poll.message_merged:
                while not poll.merge_message_aq_sub_roots(self.sub_roots_per_step):
                    await asyncio.sleep(0)
                poll.merge_message_aq()

    def build_replay(self, poll: Poll) -> MessageReplay:
        """Rebuild the poll's trees from events and check them against the ledger"""
        state_leaves = fetch_state_leaves(self.ledger, poll.num_sign_ups)
        messages = fetch_messages(self.ledger, poll)
        if len(messages) != poll.num_messages:
            raise ProcessingError(
                f"Poll {poll.poll_id}: fetched {len(messages)} messages, ledger holds {poll.num_messages}")

        replay = MessageReplay(self.ctx, self.keypair, poll.params, poll.poll_id,
                               state_leaves, messages, poll.quadratic)
        if replay.state.state_tree.root != poll.merged_state_root:
            raise ProcessingError(f"Poll {poll.poll_id}: rebuilt state root differs from the merged root")
        if replay.message_tree.root != poll.message_root:
            raise ProcessingError(f"Poll {poll.poll_id}: rebuilt message root differs from the merged root")
        if replay.state.commitment() != poll.current_state_commitment:
            raise ProcessingError(f"Poll {poll.poll_id}: initial state commitment differs")
        return replay

    async def process_poll(self, poll_id: int) -> TallyResult:
        poll = self.registry.get_poll(poll_id)
        async with self._lock_for(poll_id):
            if poll.phase is PollPhase.FINALIZED:
                return poll.tally.results
            if poll.voting_open():
                raise PhaseViolationError(f"Poll {poll_id}: voting is still open")
            if poll.coordinator_address != self.address:
                raise ProcessingError(f"Poll {poll_id} is not coordinated by {self.address}")

            logger.info(f"Processing poll {poll_id} '{poll.title}'")
            await self.merge_accumulators(poll)

            loop = asyncio.get_running_loop()
            with self.monitor.start_operation("rebuild_trees"):
                replay = await loop.run_in_executor(None, self.build_replay, poll)

            processor = poll.processor
            while not replay.done:
                with self.monitor.start_operation("replay_batch"):
                    batch = await loop.run_in_executor(None, replay.process_batch)
                if batch.batch_number < processor.num_batches_processed:
                    # already accepted on the ledger in an earlier run
                    continue
                if batch.current_commitment != processor.current_state_commitment():
                    raise ProcessingError(
                        f"Poll {poll_id}: batch {batch.batch_number} starts from a different commitment")
                with self.monitor.start_operation("prove_process"):
                    artifact = await self.prover.prove(ProofType.PROCESS_MESSAGES, batch.witness)
                with self.monitor.start_operation("submit_process"):
                    processor.process_messages(batch.new_commitment, artifact.proof, self.address)

            if not processor.processing_complete:
                processor.complete_processing(self.address)
            self.message_statuses[poll_id] = replay.statuses()

            tally = poll.tally
            builder = TallyBuilder(self.ctx, replay.state, poll.params.tally_batch_size, poll.quadratic)
            while not builder.done:
                with self.monitor.start_operation("tally_batch"):
                    batch = await loop.run_in_executor(None, builder.tally_batch)
                if batch.batch_number < tally.tally_batch_num:
                    continue
                with self.monitor.start_operation("prove_tally"):
                    artifact = await self.prover.prove(ProofType.TALLY_VOTES, batch.witness)
                with self.monitor.start_operation("submit_tally"):
                    tally.tally_votes(batch.new_commitment, artifact.proof, self.address)

            final = await loop.run_in_executor(None, builder.final)
            with self.monitor.start_operation("publish"):
                result = tally.publish_results(
                    for_votes=builder.for_votes,
                    against_votes=builder.against_votes,
                    abstain_votes=builder.abstain_votes,
                    total_voters=builder.total_voters,
                    results_root=final.results_root,
                    total_spent=final.total_spent,
                    per_option_spent_root=final.per_option_spent_root,
                    caller=self.address,
                )

            counts = Counter(status.value for status in self.message_statuses[poll_id].values())
            logger.info(f"Poll {poll_id} finalized: {result.to_dict()} statuses={dict(counts)}")
            return result

    def pending_polls(self) -> List[Poll]:
        return [
            poll for poll in self.registry.polls
            if poll.coordinator_address == self.address
            and not poll.voting_open()
            and poll.phase is not PollPhase.FINALIZED
        ]

    async def run_pending_polls(self) -> Dict[int, TallyResult]:
        """Process every closed, unfinished poll concurrently"""
        pending = self.pending_polls()
        if not pending:
            return {}

        logger.info(f"Processing {len(pending)} pending polls")
        outcomes = await asyncio.gather(
            *(self.process_poll(poll.poll_id) for poll in pending),
            return_exceptions=True,
        )

        results: Dict[int, TallyResult] = {}
        for poll, outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException):
                self.failures[poll.poll_id] = outcome
                logger.error(f"Poll {poll.poll_id} failed: {outcome}")
            else:
                self.failures.pop(poll.poll_id, None)
                results[poll.poll_id] = outcome
        return results

    async def watch(self, interval: float, iterations: Optional[int] = None):
        """Poll for closed polls every ``interval`` seconds"""
        completed = 0
        while iterations is None or completed < iterations:
            await self.run_pending_polls()
            completed += 1
            if iterations is None or completed < iterations:
                await asyncio.sleep(interval)
