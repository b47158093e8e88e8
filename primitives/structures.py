"""State leaves, ballots and published messages, with their Poseidon hashes."""

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .babyjub import BabyJubJub
from .field import check_field_elements
from .keys import PublicKey
from .merkle import compute_root

MESSAGE_DATA_LENGTH = 10
BLANK_VOICE_CREDITS = 2 ** 32

# Vote option indices
AGAINST = 0
FOR = 1
ABSTAIN = 2
VOTE_OPTIONS = ("against", "for", "abstain")


@dataclass(frozen=True)
class StateLeaf:
    public_key: PublicKey
    voice_credit_balance: int
    timestamp: int

    def as_list(self) -> List[int]:
        return [self.public_key.x, self.public_key.y, self.voice_credit_balance, self.timestamp]

    def hash(self, ctx) -> int:
        return ctx.hash(self.as_list())


BLANK_STATE_LEAF = StateLeaf(PublicKey(0, 0), BLANK_VOICE_CREDITS, 0)


@dataclass(frozen=True)
class Ballot:
    nonce: int
    votes: Tuple[int, ...]

    @classmethod
    def blank(cls, vote_option_tree_depth: int) -> "Ballot":
        return cls(0, (0,) * (5 ** vote_option_tree_depth))

    def vote_option_root(self, ctx, vote_option_tree_depth: int) -> int:
        return compute_root(ctx, self.votes, vote_option_tree_depth)

    def hash(self, ctx, vote_option_tree_depth: int) -> int:
        return ctx.hash([self.nonce, self.vote_option_root(ctx, vote_option_tree_depth)])


def blank_ballot_hash(ctx, vote_option_tree_depth: int) -> int:
    return Ballot.blank(vote_option_tree_depth).hash(ctx, vote_option_tree_depth)


@dataclass(frozen=True)
class Message:
    """Encrypted command as published: 10 ciphertext elements plus ephemeral key"""

    data: Tuple[int, ...]
    enc_pub_key: PublicKey

    def __post_init__(self):
        if len(self.data) != MESSAGE_DATA_LENGTH:
            raise ValueError(
                f"Message carries {MESSAGE_DATA_LENGTH} elements, got {len(self.data)}")

    def hash(self, ctx) -> int:
        return ctx.hash([
            ctx.hash(self.data[:5]),
            ctx.hash(self.data[5:]),
            self.enc_pub_key.x,
            self.enc_pub_key.y,
        ])

    def as_wire(self) -> List[int]:
        return [*self.data, self.enc_pub_key.x, self.enc_pub_key.y]

    @classmethod
    def from_wire(cls, values: Sequence[int]) -> "Message":
        values = check_field_elements(values, "message")
        if len(values) != MESSAGE_DATA_LENGTH + 2:
            raise ValueError(f"Wire message has {MESSAGE_DATA_LENGTH + 2} elements, got {len(values)}")
        return cls(tuple(values[:MESSAGE_DATA_LENGTH]), PublicKey(values[-2], values[-1]))

    @classmethod
    def padding(cls) -> "Message":
        """Message enqueued at poll deployment; never decrypts"""
        return cls((0,) * MESSAGE_DATA_LENGTH, PublicKey(*BabyJubJub.BASE8))
