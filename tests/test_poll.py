import dataclasses

import pytest

from ledger.chain import ZERO_ADDRESS, MessagePublishedEvent, ReentrancyGuard, SignUpEvent
from ledger.errors import (
    AccessControlError,
    FieldRangeError,
    InputValidationError,
    IntegrityViolationError,
    InvalidPublicKeyError,
    PhaseViolationError,
    ZeroAddressError,
    ZeroBatchCountError,
    ZeroDurationError,
    ZeroTreeDepthError,
)
from ledger.poll import PollPhase
from primitives.command import build_vote
from primitives.field import SNARK_FIELD_SIZE
from primitives.keys import Keypair, PublicKey
from primitives.structures import FOR, Message
from zk.zk_proofs import Groth16Proof

NO_PROOF = Groth16Proof(pi_a=[0, 0], pi_b=[[0, 0], [0, 0]], pi_c=[0, 0])


def deploy_kwargs(voting_round, **overrides):
    kwargs = dict(
        title="poll",
        duration=100,
        coordinator_pub_key=voting_round.coordinator_keypair.public_key,
        coordinator_address=voting_round.coordinator_address,
        verifier_refs=voting_round.verifier_refs,
        message_tree_depth=2,
        message_batch_depth=1,
        vote_option_tree_depth=1,
        tally_batch_size=5,
        caller=voting_round.owner,
    )
    kwargs.update(overrides)
    return kwargs


class TestSignUp:

    def test_indices_start_after_blank_leaf(self, voting_round):
        alice = voting_round.register_voter("alice")
        bob = voting_round.register_voter("bob")
        assert (alice.state_index, bob.state_index) == (1, 2)
        assert voting_round.registry.num_sign_ups == 2

        events = voting_round.ledger.get_events(SignUpEvent)
        assert [e.state_index for e in events] == [1, 2]
        assert events[0].voice_credit_balance == 100

    def test_invalid_keys_rejected(self, voting_round):
        registry = voting_round.registry
        with pytest.raises(InvalidPublicKeyError):
            registry.sign_up(PublicKey(0, 0))
        with pytest.raises(FieldRangeError):
            registry.sign_up(PublicKey(SNARK_FIELD_SIZE, 1))
        assert registry.num_sign_ups == 0

    def test_duplicate_name(self, voting_round):
        voting_round.register_voter("alice")
        with pytest.raises(ValueError):
            voting_round.register_voter("alice")


class TestDeployPoll:

    def test_deploy_emits_padding_message(self, voting_round):
        poll_id = voting_round.open_poll("Proposal")
        poll = voting_round.registry.get_poll(poll_id)
        events = voting_round.ledger.get_events(MessagePublishedEvent, poll_address=poll.address)
        assert len(events) == 1
        assert Message(events[0].data, events[0].enc_pub_key) == Message.padding()
        assert poll.phase is PollPhase.VOTING

    @pytest.mark.parametrize("overrides, error", [
        ({'caller': "0x" + "33" * 20}, AccessControlError),
        ({'duration': 0}, ZeroDurationError),
        ({'message_tree_depth': 0}, ZeroTreeDepthError),
        ({'coordinator_address': ZERO_ADDRESS}, ZeroAddressError),
        ({'coordinator_pub_key': PublicKey(0, 1)}, InvalidPublicKeyError),
        ({'tally_batch_size': 0}, ZeroBatchCountError),
        ({'message_batch_depth': 3}, InputValidationError),
        ({'tally_batch_size': 25}, InputValidationError),
    ])
    def test_rejects_bad_arguments(self, voting_round, overrides, error):
        with pytest.raises(error):
            voting_round.registry.deploy_poll(**deploy_kwargs(voting_round, **overrides))
        assert voting_round.registry.polls == []

    def test_zero_verifier_address(self, voting_round):
        refs = dataclasses.replace(voting_round.verifier_refs, verifier_address=ZERO_ADDRESS)
        with pytest.raises(ZeroAddressError):
            voting_round.registry.deploy_poll(**deploy_kwargs(voting_round, verifier_refs=refs))

    def test_unknown_poll(self, voting_round):
        with pytest.raises(InputValidationError):
            voting_round.registry.get_poll(3)


class TestPublish:

    @pytest.fixture
    def poll(self, voting_round):
        return voting_round.registry.get_poll(voting_round.open_poll("Proposal"))

    @pytest.fixture
    def message(self, ctx, poll):
        voter = Keypair.from_seed(ctx, b"publisher")
        return build_vote(ctx, voter, poll.coordinator_pub_key, 1, FOR, 1, 1, poll.poll_id)

    def test_indices_follow_padding(self, poll, message):
        assert poll.publish_message(message) == 1
        assert poll.publish_message(message) == 2

    def test_closed_window(self, voting_round, poll, message):
        voting_round.close(poll.poll_id)
        with pytest.raises(PhaseViolationError):
            poll.publish_message(message)

    def test_invalid_ephemeral_key(self, poll, message):
        with pytest.raises(InvalidPublicKeyError):
            poll.publish_message(Message(message.data, PublicKey(0, 1)))

    def test_out_of_range_element(self, poll, message):
        data = (SNARK_FIELD_SIZE,) + message.data[1:]
        with pytest.raises(FieldRangeError):
            poll.publish_message(Message(data, message.enc_pub_key))

    def test_full_message_tree(self, poll, message):
        for _ in range(poll.message_capacity - 1):
            poll.publish_message(message)
        with pytest.raises(InputValidationError):
            poll.publish_message(message)


class TestMerging:

    def test_merge_requires_closed_window(self, voting_round):
        poll = voting_round.registry.get_poll(voting_round.open_poll("Proposal"))
        with pytest.raises(PhaseViolationError):
            poll.merge_state_aq_sub_roots()
        with pytest.raises(PhaseViolationError):
            poll.merge_message_aq()

    def test_phases_advance(self, voting_round):
        voting_round.register_voter("alice")
        poll = voting_round.registry.get_poll(voting_round.open_poll("Proposal"))
        voting_round.close(poll.poll_id)
        assert poll.phase is PollPhase.MERGING

        assert poll.merge_state_aq_sub_roots(0)
        poll.merge_state_aq()
        assert poll.num_sign_ups == 1
        with pytest.raises(PhaseViolationError):
            poll.merge_state_aq()
        assert poll.phase is PollPhase.MERGING

        poll.merge_message_aq_sub_roots(0)
        poll.merge_message_aq()
        assert poll.num_messages == 1
        assert poll.phase is PollPhase.PROCESSING

    def test_sign_up_blocked_until_next_poll(self, voting_round):
        voting_round.register_voter("alice")
        poll = voting_round.registry.get_poll(voting_round.open_poll("First"))
        voting_round.close(poll.poll_id)
        poll.merge_state_aq_sub_roots(0)
        poll.merge_state_aq()
        with pytest.raises(PhaseViolationError):
            voting_round.register_voter("bob")

        voting_round.open_poll("Second")
        assert voting_round.register_voter("bob").state_index == 2

    def test_only_polls_merge_the_state_tree(self, voting_round):
        with pytest.raises(AccessControlError):
            voting_round.registry.merge_state_aq(voting_round.owner)


class TestProcessorGuards:

    @pytest.fixture
    def merged_poll(self, voting_round):
        voting_round.register_voter("alice")
        poll = voting_round.registry.get_poll(voting_round.open_poll("Proposal"))
        voting_round.close(poll.poll_id)
        poll.merge_state_aq_sub_roots(0)
        poll.merge_state_aq()
        poll.merge_message_aq_sub_roots(0)
        poll.merge_message_aq()
        return poll

    def test_coordinator_only(self, voting_round, merged_poll):
        with pytest.raises(AccessControlError):
            merged_poll.processor.process_messages(1, NO_PROOF, voting_round.owner)
        with pytest.raises(AccessControlError):
            merged_poll.tally.tally_votes(1, NO_PROOF, voting_round.owner)

    def test_requires_merged_trees(self, voting_round):
        poll = voting_round.registry.get_poll(voting_round.open_poll("Proposal"))
        voting_round.close(poll.poll_id)
        with pytest.raises(PhaseViolationError):
            poll.processor.process_messages(1, NO_PROOF, voting_round.coordinator_address)

    def test_invalid_proof_changes_nothing(self, voting_round, merged_poll):
        processor = merged_poll.processor
        with pytest.raises(IntegrityViolationError):
            processor.process_messages(1, NO_PROOF, voting_round.coordinator_address)
        assert processor.num_batches_processed == 0
        assert processor.current_state_commitment() == merged_poll.current_state_commitment

    def test_complete_needs_batches(self, voting_round, merged_poll):
        with pytest.raises(PhaseViolationError, match="No batches processed"):
            merged_poll.processor.complete_processing(voting_round.coordinator_address)

    def test_tally_needs_processing(self, voting_round, merged_poll):
        with pytest.raises(PhaseViolationError):
            merged_poll.tally.tally_votes(1, NO_PROOF, voting_round.coordinator_address)


def test_reentrancy_guard():
    guard = ReentrancyGuard("test")
    with guard.enter("outer"):
        with pytest.raises(PhaseViolationError):
            with guard.enter("inner"):
                pass
    with guard.enter("again"):
        pass
