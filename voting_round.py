#!/usr/bin/env python3
"""
Voting round
============
One self-contained deployment of the protocol: an in-process ledger with a
registry, verifying keys and a coordinator, plus the voter-side calls
(register, vote, rotate key). Used by the CLI demo and the end-to-end tests.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from config.config import ProtocolConfig
from coordinator.pipeline import Coordinator
from ledger.chain import Ledger, ManualClock
from ledger.processor import TallyResult
from ledger.registry import ConstantVoiceCreditProxy, Registry, VerifierRefs
from ledger.vk_registry import CircuitParams, VkRegistry
from primitives.command import build_key_change, build_vote
from primitives.keys import Keypair
from utils.utils import PerformanceMonitor
from zk.zk_proofs import VerifyingKey

logger = logging.getLogger(__name__)


@dataclass
class Voter:
    """A registered voter and the key and nonce it uses in each poll"""
    name: str
    signup_keypair: Keypair
    state_index: int
    poll_keys: Dict[int, Keypair] = field(default_factory=dict)
    poll_nonces: Dict[int, int] = field(default_factory=dict)

    def keypair_for(self, poll_id: int) -> Keypair:
        return self.poll_keys.get(poll_id, self.signup_keypair)

    def next_nonce(self, poll_id: int) -> int:
        nonce = self.poll_nonces.get(poll_id, 0) + 1
        self.poll_nonces[poll_id] = nonce
        return nonce


class VotingRound:

    def __init__(self, ctx, protocol: ProtocolConfig, prover, verifier,
                 process_vk: VerifyingKey, tally_vk: VerifyingKey,
                 coordinator_keypair: Optional[Keypair] = None, clock=None,
                 monitor: Optional[PerformanceMonitor] = None):
        self.ctx = ctx
        self.protocol = protocol
        self.ledger = Ledger(clock or ManualClock())
        self.owner = self.ledger.new_address("owner")
        self.coordinator_address = self.ledger.new_address("coordinator")
        self.coordinator_keypair = coordinator_keypair or Keypair.generate(ctx)

        self.registry = Registry(
            ctx, self.ledger, self.owner,
            state_tree_depth=protocol.state_tree_depth,
            state_tree_sub_depth=protocol.state_tree_sub_depth,
            voice_credit_proxy=ConstantVoiceCreditProxy(protocol.initial_voice_credits),
        )

        self.vk_registry = VkRegistry(self.owner)
        self.verifier_refs = VerifierRefs(
            verifier_address=self.ledger.deploy("verifier", verifier),
            vk_registry_address=self.ledger.deploy("vk_registry", self.vk_registry),
        )
        self.vk_registry.set_verifying_keys(self.circuit_params, process_vk, tally_vk, self.owner)

        self.coordinator = Coordinator(
            ctx, self.ledger, self.registry, self.coordinator_keypair,
            self.coordinator_address, prover, monitor=monitor)
        self.voters: Dict[str, Voter] = {}

    @property
    def circuit_params(self) -> CircuitParams:
        return CircuitParams(
            state_tree_depth=self.protocol.state_tree_depth,
            message_tree_depth=self.protocol.message_tree_depth,
            message_batch_depth=self.protocol.message_batch_depth,
            vote_option_tree_depth=self.protocol.vote_option_tree_depth,
            tally_batch_size=self.protocol.tally_batch_size,
        )

    # ------------------------------------------------------------------
    # set-up
    # ------------------------------------------------------------------

    def register_voter(self, name: str, keypair: Optional[Keypair] = None) -> Voter:
        if name in self.voters:
            raise ValueError(f"Voter {name} is already registered")
        keypair = keypair or Keypair.generate(self.ctx)
        state_index = self.registry.sign_up(keypair.public_key)
        voter = Voter(name, keypair, state_index)
        self.voters[name] = voter
        logger.info(f"Registered {name} at state index {state_index}")
        return voter

    def open_poll(self, title: str, duration: Optional[int] = None) -> int:
        return self.registry.deploy_poll(
            title=title,
            duration=duration or self.protocol.poll_duration,
            coordinator_pub_key=self.coordinator_keypair.public_key,
            coordinator_address=self.coordinator_address,
            verifier_refs=self.verifier_refs,
            message_tree_depth=self.protocol.message_tree_depth,
            message_batch_depth=self.protocol.message_batch_depth,
            vote_option_tree_depth=self.protocol.vote_option_tree_depth,
            tally_batch_size=self.protocol.tally_batch_size,
            quadratic=self.protocol.quadratic,
            caller=self.owner,
        )

    # ------------------------------------------------------------------
    # voting
    # ------------------------------------------------------------------

    def cast_vote(self, voter: Voter, poll_id: int, option: int, weight: int = 1) -> int:
        """Publish a vote signed with the voter's current key; returns the message index"""
        poll = self.registry.get_poll(poll_id)
        message = build_vote(
            self.ctx, voter.keypair_for(poll_id), poll.coordinator_pub_key,
            voter.state_index, option, weight, voter.next_nonce(poll_id), poll_id)
        return poll.publish_message(message)

    def change_key(self, voter: Voter, poll_id: int, new_keypair: Optional[Keypair] = None) -> int:
        """Rotate the voter's key for this poll; later votes must use the new key"""
        poll = self.registry.get_poll(poll_id)
        new_keypair = new_keypair or Keypair.generate(self.ctx)
        message = build_key_change(
            self.ctx, voter.keypair_for(poll_id), new_keypair.public_key, poll.coordinator_pub_key,
            voter.state_index, voter.next_nonce(poll_id), poll_id)
        index = poll.publish_message(message)
        voter.poll_keys[poll_id] = new_keypair
        return index

    # ------------------------------------------------------------------
    # closing
    # ------------------------------------------------------------------

    def close(self, poll_id: int):
        """Advance a manual clock past the poll's deadline"""
        poll = self.registry.get_poll(poll_id)
        clock = self.ledger.clock
        if not isinstance(clock, ManualClock):
            raise TypeError("Only a manual clock can be advanced")
        remaining = poll.deadline - clock.now()
        if remaining > 0:
            clock.advance(remaining)

    async def finalize(self, poll_id: int) -> TallyResult:
        return await self.coordinator.process_poll(poll_id)
