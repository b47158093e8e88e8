"""
Voter commands: bit packing, signing, and encryption to the coordinator.

A command packs five sub-fields into one field element so the coordinator
verifies a single EdDSA signature per message:

    packed = stateIndex | voteOption << 50 | weight << 100 | nonce << 150 | pollId << 200

The plaintext sent through the sponge is
``[packed, newPubKeyX, newPubKeyY, salt, R8x, R8y, S]``.
"""

import logging
import secrets
from dataclasses import dataclass
from typing import List, Optional, Tuple

from . import eddsa, sponge
from .errors import CommandPackingError
from .eddsa import Signature
from .keys import Keypair, PublicKey, shared_key
from .structures import Message

logger = logging.getLogger(__name__)

SLOT_BITS = 50
SLOT_LIMIT = 1 << SLOT_BITS
SLOT_MASK = SLOT_LIMIT - 1
PACKED_FIELDS = ("state_index", "vote_option_index", "new_vote_weight", "nonce", "poll_id")

PLAINTEXT_LENGTH = 7
MESSAGE_NONCE = 0
SALT_BITS = 250


def pack(state_index: int, vote_option_index: int, new_vote_weight: int, nonce: int, poll_id: int) -> int:
    packed = 0
    values = (state_index, vote_option_index, new_vote_weight, nonce, poll_id)
    for slot, (name, value) in enumerate(zip(PACKED_FIELDS, values)):
        value = int(value)
        if not 0 <= value < SLOT_LIMIT:
            raise CommandPackingError(f"{name}={value} does not fit in {SLOT_BITS} bits")
        packed |= value << (slot * SLOT_BITS)
    return packed


def unpack(packed: int) -> Tuple[int, int, int, int, int]:
    packed = int(packed)
    if packed >> (SLOT_BITS * len(PACKED_FIELDS)):
        raise CommandPackingError("Packed command has bits above the poll id slot")
    return tuple((packed >> (slot * SLOT_BITS)) & SLOT_MASK for slot in range(len(PACKED_FIELDS)))


def generate_salt() -> int:
    return secrets.randbits(SALT_BITS)


@dataclass(frozen=True)
class Command:
    state_index: int
    vote_option_index: int
    new_vote_weight: int
    nonce: int
    poll_id: int
    new_pub_key: PublicKey
    salt: int

    @classmethod
    def create(cls, state_index, vote_option_index, new_vote_weight, nonce, poll_id,
               new_pub_key: PublicKey, salt: Optional[int] = None) -> "Command":
        command = cls(int(state_index), int(vote_option_index), int(new_vote_weight), int(nonce),
                      int(poll_id), new_pub_key, generate_salt() if salt is None else int(salt))
        command.pack()  # range check
        return command

    def pack(self) -> int:
        return pack(self.state_index, self.vote_option_index, self.new_vote_weight,
                    self.nonce, self.poll_id)

    def hash(self, ctx) -> int:
        """Value covered by the voter's signature"""
        return ctx.hash([self.pack(), self.new_pub_key.x, self.new_pub_key.y, self.salt])

    def sign(self, ctx, private_key: int) -> Signature:
        return eddsa.sign(ctx, private_key, self.hash(ctx))

    def verify_signature(self, ctx, signature: Signature, public_key: PublicKey) -> bool:
        return eddsa.verify(ctx, self.hash(ctx), signature, public_key)

    def plaintext(self, signature: Signature) -> List[int]:
        return [self.pack(), self.new_pub_key.x, self.new_pub_key.y, self.salt, *signature.as_list()]

    def encrypt(self, ctx, signature: Signature, coordinator_pub_key: PublicKey,
                ephemeral: Optional[Keypair] = None) -> Message:
        """Encrypt under a fresh ephemeral key shared with the coordinator"""
        ephemeral = ephemeral or Keypair.generate(ctx)
        key = shared_key(ctx, ephemeral.private_key, coordinator_pub_key)
        ciphertext = sponge.encrypt(ctx, self.plaintext(signature), key, MESSAGE_NONCE)
        return Message(tuple(int(v) for v in ciphertext), ephemeral.public_key)

    @classmethod
    def from_plaintext(cls, values: List[int]) -> Tuple["Command", Signature]:
        if len(values) != PLAINTEXT_LENGTH:
            raise CommandPackingError(f"Command plaintext has {len(values)} elements")
        state_index, option, weight, nonce, poll_id = unpack(values[0])
        command = cls(state_index, option, weight, nonce, poll_id,
                      PublicKey(int(values[1]), int(values[2])), int(values[3]))
        return command, Signature.from_list(values[4:7])


def decrypt_message(ctx, message: Message, coordinator: Keypair) -> Tuple[Command, Signature]:
    """
    Recover the signed command from a published message.

    Raises InvalidPublicKeyError for a bad ephemeral key, MalformedCiphertextError
    or AuthenticationError from the sponge, and CommandPackingError when the
    plaintext does not unpack.
    """
    key = shared_key(ctx, coordinator.private_key, message.enc_pub_key)
    plaintext = sponge.decrypt(ctx, message.data, key, MESSAGE_NONCE, PLAINTEXT_LENGTH)
    return Command.from_plaintext([int(v) for v in plaintext])


def build_vote(ctx, voter: Keypair, coordinator_pub_key: PublicKey, state_index: int,
               vote_option_index: int, weight: int, nonce: int, poll_id: int) -> Message:
    command = Command.create(state_index, vote_option_index, weight, nonce, poll_id,
                             voter.public_key)
    return command.encrypt(ctx, command.sign(ctx, voter.private_key), coordinator_pub_key)


def build_key_change(ctx, voter: Keypair, new_pub_key: PublicKey, coordinator_pub_key: PublicKey,
                     state_index: int, nonce: int, poll_id: int) -> Message:
    """Key rotation: weight 0 on option 0, signed by the current key"""
    command = Command.create(state_index, 0, 0, nonce, poll_id, new_pub_key)
    return command.encrypt(ctx, command.sign(ctx, voter.private_key), coordinator_pub_key)
