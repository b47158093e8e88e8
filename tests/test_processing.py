import pytest

from coordinator.processing import MessageReplay, MessageStatus, PollState, vote_cost
from coordinator.tally import TallyBuilder
from ledger.vk_registry import CircuitParams
from primitives.command import build_key_change, build_vote
from primitives.keys import Keypair
from primitives.merkle import compute_root
from primitives.structures import ABSTAIN, AGAINST, BLANK_STATE_LEAF, FOR, Message, StateLeaf

PARAMS = CircuitParams(state_tree_depth=2, message_tree_depth=2, message_batch_depth=1,
                       vote_option_tree_depth=1, tally_batch_size=5)


@pytest.fixture(scope="module")
def voters(ctx):
    return [Keypair.from_seed(ctx, f"voter-{i}".encode()) for i in range(3)]


@pytest.fixture
def replay_for(ctx, coordinator_keypair, voters):
    def make(messages, quadratic=True, poll_id=0, params=PARAMS):
        leaves = [BLANK_STATE_LEAF] + [StateLeaf(v.public_key, 100, 1) for v in voters]
        replay = MessageReplay(ctx, coordinator_keypair, params, poll_id, leaves,
                               [Message.padding()] + list(messages), quadratic)
        replay.run()
        return replay
    return make


@pytest.fixture
def vote(ctx, coordinator_keypair, voters):
    def make(voter, option, weight, nonce, poll_id=0, signer=None, state_index=None):
        signer = signer or voters[voter]
        return build_vote(ctx, signer, coordinator_keypair.public_key,
                          voter + 1 if state_index is None else state_index,
                          option, weight, nonce, poll_id)
    return make


def test_vote_cost():
    assert vote_cost(3) == 9
    assert vote_cost(3, quadratic=False) == 3


def test_single_vote_is_applied(replay_for, vote):
    replay = replay_for([vote(0, FOR, 3, 1)])
    assert replay.statuses()[1] is MessageStatus.APPLIED
    assert replay.state.ballots[1].votes[FOR] == 3
    assert replay.state.ballots[1].nonce == 1
    assert replay.state.state_leaves[1].voice_credit_balance == 100 - 9


def test_padding_message_is_a_no_op(replay_for):
    replay = replay_for([])
    assert replay.statuses()[0] in (MessageStatus.AUTHENTICATION_FAILED, MessageStatus.MALFORMED)
    assert replay.state.commitment() == PollState(replay.ctx, PARAMS, replay.state.initial_leaves).commitment()


def test_last_valid_vote_wins(replay_for, vote):
    replay = replay_for([vote(0, FOR, 1, 1), vote(0, AGAINST, 2, 2)])
    statuses = replay.statuses()
    assert statuses[1] is MessageStatus.SUPERSEDED
    assert statuses[2] is MessageStatus.APPLIED
    assert replay.state.ballots[1].votes == (2, 0, 0, 0, 0)
    # cost is charged once against the sign-up balance
    assert replay.state.state_leaves[1].voice_credit_balance == 96


def test_nonce_must_follow_previous(replay_for, vote):
    replay = replay_for([vote(0, FOR, 1, 2), vote(0, FOR, 1, 1), vote(0, FOR, 1, 1)])
    statuses = replay.statuses()
    assert statuses[1] is MessageStatus.INVALID_NONCE
    assert statuses[2] is MessageStatus.APPLIED
    assert statuses[3] is MessageStatus.INVALID_NONCE


def test_key_change_authorises_new_key(ctx, coordinator_keypair, voters, replay_for, vote):
    new_key = Keypair.from_seed(ctx, b"rotated")
    change = build_key_change(ctx, voters[0], new_key.public_key, coordinator_keypair.public_key, 1, 1, 0)
    replay = replay_for([
        change,
        vote(0, FOR, 1, 2, signer=voters[0]),
        vote(0, AGAINST, 1, 2, signer=new_key),
    ])
    statuses = replay.statuses()
    assert statuses[1] is MessageStatus.SUPERSEDED
    assert statuses[2] is MessageStatus.INVALID_SIGNATURE
    assert statuses[3] is MessageStatus.APPLIED
    # the vote carries the signer's key as the leaf's new key
    assert replay.state.state_leaves[1].public_key == new_key.public_key
    assert replay.state.ballots[1].votes[AGAINST] == 1


def test_trailing_key_change_clears_the_vote(ctx, coordinator_keypair, voters, replay_for, vote):
    new_key = Keypair.from_seed(ctx, b"rotated")
    change = build_key_change(ctx, voters[0], new_key.public_key, coordinator_keypair.public_key, 1, 2, 0)
    replay = replay_for([vote(0, FOR, 2, 1), change])
    assert replay.statuses()[2] is MessageStatus.APPLIED
    assert not any(replay.state.ballots[1].votes)
    assert replay.state.state_leaves[1].voice_credit_balance == 100


@pytest.mark.parametrize("option, weight, extra, status", [
    (FOR, 1, {'poll_id': 1}, MessageStatus.WRONG_POLL),
    (FOR, 1, {'state_index': 4}, MessageStatus.INVALID_STATE_INDEX),
    (FOR, 1, {'state_index': 0}, MessageStatus.INVALID_STATE_INDEX),
    (3, 1, {}, MessageStatus.INVALID_VOTE_OPTION),
    (FOR, 11, {}, MessageStatus.INSUFFICIENT_CREDITS),
])
def test_rejections(replay_for, vote, option, weight, extra, status):
    replay = replay_for([vote(0, option, weight, 1, **extra)])
    assert replay.statuses()[1] is status
    assert replay.state.ballots[1].nonce == 0


def test_linear_cost_allows_heavier_votes(replay_for, vote):
    replay = replay_for([vote(0, FOR, 11, 1)], quadratic=False)
    assert replay.statuses()[1] is MessageStatus.APPLIED
    assert replay.state.state_leaves[1].voice_credit_balance == 89


def test_signature_by_another_voter(replay_for, vote, voters):
    replay = replay_for([vote(0, FOR, 1, 1, signer=voters[1])])
    assert replay.statuses()[1] is MessageStatus.INVALID_SIGNATURE


def test_message_for_another_coordinator(ctx, voters, replay_for):
    stranger = Keypair.from_seed(ctx, b"other coordinator")
    message = build_vote(ctx, voters[0], stranger.public_key, 1, FOR, 1, 1, 0)
    assert replay_for([message]).statuses()[1] is MessageStatus.AUTHENTICATION_FAILED


def test_batches_run_from_the_end(ctx, coordinator_keypair, voters, vote):
    leaves = [BLANK_STATE_LEAF] + [StateLeaf(v.public_key, 100, 1) for v in voters]
    messages = [Message.padding()] + [vote(i % 3, FOR, 1, i // 3 + 1) for i in range(6)]
    replay = MessageReplay(ctx, coordinator_keypair, PARAMS, 0, leaves, messages)

    assert replay.num_batches == 2
    first = replay.process_batch()
    second = replay.process_batch()
    assert (first.start_index, first.end_index) == (5, 7)
    assert (second.start_index, second.end_index) == (0, 5)
    assert second.current_commitment == first.new_commitment
    assert replay.done

    witness = first.witness
    assert len(witness.messages) == 5
    assert all(len(m) == 10 for m in witness.messages)
    assert len(witness.state_proofs[0]) == PARAMS.state_tree_depth
    assert witness.public_signals() == [witness.input_hash]

    # voters 1 and 2 are applied from the final batch, voter 0 from the earlier one
    statuses = replay.statuses()
    assert statuses[5] is MessageStatus.APPLIED
    assert statuses[6] is MessageStatus.APPLIED
    assert statuses[4] is MessageStatus.APPLIED
    assert statuses[3] is MessageStatus.SUPERSEDED
    assert statuses[1] is MessageStatus.SUPERSEDED
    with pytest.raises(RuntimeError):
        replay.process_batch()


def test_tally_in_batches(ctx, replay_for, vote):
    replay = replay_for([vote(0, FOR, 2, 1), vote(1, AGAINST, 1, 1), vote(2, ABSTAIN, 3, 1)])
    builder = TallyBuilder(ctx, replay.state, batch_size=2)
    assert builder.num_batches == 2

    first = builder.tally_batch()
    second = builder.tally_batch()
    assert first.current_commitment == 0
    assert second.current_commitment == first.new_commitment
    assert len(second.witness.state_leaves) == 2

    final = builder.final()
    assert (builder.for_votes, builder.against_votes, builder.abstain_votes) == (2, 1, 3)
    assert builder.total_voters == 3
    assert final.total_spent == 4 + 1 + 9
    assert final.results_root == compute_root(ctx, [1, 2, 3], 1)
    assert final.commitment == second.new_commitment
    assert final.commitment == ctx.hash([final.results_root, final.total_spent, final.per_option_spent_root])


@pytest.mark.parametrize("quadratic", [True, False])
def test_tally_conserves_spent_credits(ctx, replay_for, vote, quadratic):
    replay = replay_for([vote(0, FOR, 4, 1), vote(1, FOR, 2, 1), vote(2, AGAINST, 5, 1)],
                        quadratic=quadratic)
    builder = TallyBuilder(ctx, replay.state, batch_size=5, quadratic=quadratic)
    while not builder.done:
        builder.tally_batch()

    final = builder.final()
    spent = sum(100 - leaf.voice_credit_balance for leaf in replay.state.state_leaves[1:])
    assert final.total_spent == spent == sum(final.per_option_spent)
    assert final.total_spent == (16 + 4 + 25 if quadratic else 11)
    assert builder.for_votes == 6
