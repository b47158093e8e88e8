"""
Per-message diagnostics for a poll: decrypt every message with the
coordinator key and report what the replay would see.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ledger.chain import Ledger, SignUpEvent
from primitives.keys import Keypair, PublicKey

from .pipeline import fetch_messages
from .processing import decrypt_messages

logger = logging.getLogger(__name__)


@dataclass
class MessageDiagnosis:
    index: int
    padding: bool
    decrypt_status: str
    error: Optional[str] = None
    command: Optional[Dict[str, Any]] = None
    registered_key: Optional[PublicKey] = None
    signature_valid_registered_key: Optional[bool] = None
    signature_valid_new_key: Optional[bool] = None

    @property
    def summary(self) -> str:
        if self.padding:
            return "padding message"
        if self.command is None:
            return f"decryption failed ({self.decrypt_status})"
        if self.registered_key is None:
            return f"state index {self.command['state_index']} is not registered"
        if self.signature_valid_registered_key:
            return "signed by the registered key"
        if self.signature_valid_new_key:
            return "signed by the command's new key, not the registered key"
        return "signature fails against both keys"


@dataclass
class PollDiagnosis:
    poll_id: int
    poll_address: str
    phase: str
    voting_open: bool
    num_messages: int
    num_sign_ups: int
    coordinator_pub_key: PublicKey
    coordinator_key_matches: bool
    results: Optional[Dict[str, Any]] = None
    messages: List[MessageDiagnosis] = field(default_factory=list)


def diagnose_poll(ctx, ledger: Ledger, registry, poll_id: int, coordinator: Keypair) -> PollDiagnosis:
    poll = registry.get_poll(poll_id)
    registered = {e.state_index: e.pub_key for e in ledger.get_events(SignUpEvent)}
    messages = fetch_messages(ledger, poll)

    diagnosis = PollDiagnosis(
        poll_id=poll_id,
        poll_address=poll.address,
        phase=poll.phase.value,
        voting_open=poll.voting_open(),
        num_messages=len(messages),
        num_sign_ups=registry.num_sign_ups,
        coordinator_pub_key=poll.coordinator_pub_key,
        coordinator_key_matches=poll.coordinator_pub_key == coordinator.public_key,
        results=poll.tally.results.to_dict() if poll.tally and poll.tally.results else None,
    )
    if not diagnosis.coordinator_key_matches:
        logger.warning(f"Poll {poll_id} was deployed for a different coordinator key")

    for entry in decrypt_messages(ctx, messages, coordinator):
        item = MessageDiagnosis(
            index=entry.index,
            padding=entry.index == 0,
            decrypt_status="ok" if entry.command is not None else entry.rejection.value,
            error=entry.error,
        )
        if entry.command is not None:
            command = entry.command
            item.command = {
                'state_index': command.state_index,
                'vote_option_index': command.vote_option_index,
                'new_vote_weight': command.new_vote_weight,
                'nonce': command.nonce,
                'poll_id': command.poll_id,
                'new_pub_key': command.new_pub_key.serialize(),
            }
            item.registered_key = registered.get(command.state_index)
            if item.registered_key is not None:
                item.signature_valid_registered_key = command.verify_signature(
                    ctx, entry.signature, item.registered_key)
            item.signature_valid_new_key = command.verify_signature(
                ctx, entry.signature, command.new_pub_key)
        logger.debug(f"Message {item.index}: {item.summary}")
        diagnosis.messages.append(item)

    return diagnosis


def format_diagnosis(diagnosis: PollDiagnosis) -> str:
    lines = []
    lines.append("=" * 80)
    lines.append(f"POLL {diagnosis.poll_id} DIAGNOSIS")
    lines.append("=" * 80)
    lines.append(f"Poll address: {diagnosis.poll_address}")
    lines.append(f"Phase: {diagnosis.phase} (voting open: {diagnosis.voting_open})")
    lines.append(f"Messages: {diagnosis.num_messages}  Sign-ups: {diagnosis.num_sign_ups}")
    lines.append(f"Coordinator key: {diagnosis.coordinator_pub_key.serialize()}"
                 f"{'' if diagnosis.coordinator_key_matches else '  (MISMATCH)'}")
    if diagnosis.results:
        lines.append(f"Results: {diagnosis.results}")
    lines.append("")

    for item in diagnosis.messages:
        lines.append(f"Message {item.index}: {item.summary}")
        if item.command:
            c = item.command
            lines.append(
                f"  stateIndex={c['state_index']} option={c['vote_option_index']} "
                f"weight={c['new_vote_weight']} nonce={c['nonce']} pollId={c['poll_id']}")
        elif item.error and not item.padding:
            lines.append(f"  {item.error}")

    lines.append("=" * 80)
    return "\n".join(lines)
