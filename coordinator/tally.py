"""Off-ledger tally over the final processed state, one batch of state leaves at a time."""

import logging
from dataclasses import dataclass
from typing import List

from primitives.merkle import compute_root
from primitives.structures import ABSTAIN, AGAINST, FOR, Ballot
from zk.zk_proofs import TallyVotesWitness, tally_public_input_hash

from .processing import PollState, vote_cost

logger = logging.getLogger(__name__)


@dataclass
class TallySnapshot:
    results: List[int]
    per_option_spent: List[int]
    total_spent: int
    results_root: int
    per_option_spent_root: int
    commitment: int


@dataclass
class TallyBatch:
    batch_number: int
    start_index: int
    end_index: int
    current_commitment: int
    new_commitment: int
    witness: TallyVotesWitness


class TallyBuilder:

    def __init__(self, ctx, state: PollState, batch_size: int, quadratic: bool = True):
        self.ctx = ctx
        self.state = state
        self.batch_size = batch_size
        self.quadratic = quadratic
        self.num_options = 5 ** state.params.vote_option_tree_depth

        self.results = [0] * self.num_options
        self.per_option_spent = [0] * self.num_options
        self.total_spent = 0
        self.total_voters = 0
        self.commitment = 0
        self.batches_done = 0

    @property
    def num_leaves(self) -> int:
        return len(self.state.state_leaves)

    @property
    def num_batches(self) -> int:
        return -(-self.num_leaves // self.batch_size)

    @property
    def done(self) -> bool:
        return self.batches_done >= self.num_batches

    def _snapshot(self) -> TallySnapshot:
        depth = self.state.params.vote_option_tree_depth
        results_root = compute_root(self.ctx, self.results, depth)
        spent_root = compute_root(self.ctx, self.per_option_spent, depth)
        return TallySnapshot(
            results=list(self.results),
            per_option_spent=list(self.per_option_spent),
            total_spent=self.total_spent,
            results_root=results_root,
            per_option_spent_root=spent_root,
            commitment=self.ctx.hash([results_root, self.total_spent, spent_root]),
        )

    def tally_batch(self) -> TallyBatch:
        if self.done:
            raise RuntimeError("Every tally batch has been built")

        start = self.batches_done * self.batch_size
        end = min(start + self.batch_size, self.num_leaves)
        before = self._snapshot()
        vo_depth = self.state.params.vote_option_tree_depth

        state_leaves, nonces, weights, vo_roots, proofs, path_indices = [], [], [], [], [], []
        for index in range(start, start + self.batch_size):
            in_range = index < end
            ballot = self.state.ballots[index] if in_range else Ballot.blank(vo_depth)
            leaf = self.state.state_leaves[index] if in_range else None

            for option, weight in enumerate(ballot.votes):
                self.results[option] += weight
                spent = vote_cost(weight, self.quadratic)
                self.per_option_spent[option] += spent
                self.total_spent += spent
            if in_range and index > 0 and any(ballot.votes):
                self.total_voters += 1

            path = self.state.state_tree.path(min(index, self.state.state_tree.capacity - 1))
            state_leaves.append(leaf.as_list() if leaf else [0, 0, 0, 0])
            nonces.append(ballot.nonce)
            weights.append(list(ballot.votes))
            vo_roots.append(ballot.vote_option_root(self.ctx, vo_depth))
            proofs.append(path.path_elements)
            path_indices.append(path.path_indices)

        after = self._snapshot()
        state_commitment = self.state.commitment()
        input_hash = tally_public_input_hash(
            state_commitment=state_commitment,
            current_tally_commitment=self.commitment,
            new_tally_commitment=after.commitment,
            batch_start_index=start,
            num_sign_ups=self.state.num_sign_ups,
        )
        witness = TallyVotesWitness(
            input_hash=input_hash,
            state_commitment=state_commitment,
            tally_commitment=self.commitment,
            new_tally_commitment=after.commitment,
            batch_start_index=start,
            num_sign_ups=self.state.num_sign_ups,
            state_root=self.state.state_tree.root,
            ballot_root=self.state.ballot_tree.root,
            state_leaves=state_leaves,
            ballot_nonces=nonces,
            vote_weights=weights,
            vote_option_roots=vo_roots,
            state_proofs=proofs,
            state_path_indices=path_indices,
            current_tally=before.results,
            new_tally=after.results,
            current_total_spent=before.total_spent,
            new_total_spent=after.total_spent,
            current_per_option_spent=before.per_option_spent,
            new_per_option_spent=after.per_option_spent,
            current_tally_results_root=before.results_root,
            new_tally_results_root=after.results_root,
            current_per_option_spent_root=before.per_option_spent_root,
            new_per_option_spent_root=after.per_option_spent_root,
        )

        batch = TallyBatch(self.batches_done, start, end, self.commitment, after.commitment, witness)
        self.commitment = after.commitment
        self.batches_done += 1
        logger.info(f"Tallied state leaves [{start}, {end}), total spent {self.total_spent}")
        return batch

    def final(self) -> TallySnapshot:
        return self._snapshot()

    @property
    def for_votes(self) -> int:
        return self.results[FOR]

    @property
    def against_votes(self) -> int:
        return self.results[AGAINST]

    @property
    def abstain_votes(self) -> int:
        return self.results[ABSTAIN]
