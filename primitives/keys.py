"""
Key derivation and Diffie-Hellman key exchange on Baby Jubjub.

Private keys are scalars modulo the prime subgroup order, derived from a seed
with BLAKE2b-512 and RFC 8032 clamping; public keys are ``sk * Base8``.
"""

import secrets
from dataclasses import dataclass
from typing import List, Tuple, Union

from cryptography.hazmat.primitives import hashes

from .babyjub import BabyJubJub
from .errors import InvalidPublicKeyError

PRIVATE_KEY_PREFIX = "macisk."
PUBLIC_KEY_PREFIX = "macipk."


def blake2b_512(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.BLAKE2b(64))
    digest.update(data)
    return digest.finalize()


def derive_private_key(seed: bytes) -> int:
    """Derive a curve scalar from an arbitrary seed"""
    key_bytes = bytearray(blake2b_512(seed)[:32])
    key_bytes[0] &= 0xF8
    key_bytes[31] &= 0x7F
    key_bytes[31] |= 0x40
    return int.from_bytes(key_bytes, "little") % BabyJubJub.SUBORDER


@dataclass(frozen=True)
class PublicKey:
    x: int
    y: int

    def as_tuple(self) -> Tuple[int, int]:
        return (self.x, self.y)

    def as_list(self) -> List[int]:
        return [self.x, self.y]

    def hash(self, ctx) -> int:
        return ctx.hash([self.x, self.y])

    def serialize(self) -> str:
        return f"{PUBLIC_KEY_PREFIX}{self.x:064x}{self.y:064x}"

    @classmethod
    def deserialize(cls, text: str) -> "PublicKey":
        if not text.startswith(PUBLIC_KEY_PREFIX):
            raise ValueError(f"Public key must start with {PUBLIC_KEY_PREFIX!r}")
        body = text[len(PUBLIC_KEY_PREFIX):]
        if len(body) != 128:
            raise ValueError("Public key body must be 128 hex characters")
        return cls(int(body[:64], 16), int(body[64:], 16))


def validate_public_key(ctx, point: Union[PublicKey, Tuple[int, int]]) -> PublicKey:
    """Reject points that are off-curve, outside the subgroup or the identity"""
    key = point if isinstance(point, PublicKey) else PublicKey(int(point[0]), int(point[1]))
    if not ctx.babyjub.is_valid_public_key(key.as_tuple()):
        raise InvalidPublicKeyError(f"Invalid public key: ({key.x}, {key.y})")
    return key


@dataclass(frozen=True)
class Keypair:
    private_key: int
    public_key: PublicKey

    @classmethod
    def from_private_key(cls, ctx, private_key: int) -> "Keypair":
        private_key = int(private_key)
        if not 0 < private_key < BabyJubJub.SUBORDER:
            raise ValueError("Private key must be a non-zero scalar below the subgroup order")
        x, y = ctx.babyjub.mul_base(private_key)
        return cls(private_key, PublicKey(x, y))

    @classmethod
    def from_seed(cls, ctx, seed: bytes) -> "Keypair":
        return cls.from_private_key(ctx, derive_private_key(seed))

    @classmethod
    def generate(cls, ctx) -> "Keypair":
        while True:
            private_key = derive_private_key(secrets.token_bytes(32))
            if private_key:
                return cls.from_private_key(ctx, private_key)

    @classmethod
    def from_signature(cls, ctx, signature: Union[bytes, str]) -> "Keypair":
        """Deterministic keypair from an external wallet signature"""
        if isinstance(signature, str):
            signature = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
        return cls.from_seed(ctx, signature)

    def serialize_private_key(self) -> str:
        return f"{PRIVATE_KEY_PREFIX}{self.private_key:064x}"

    @classmethod
    def deserialize(cls, ctx, text: str) -> "Keypair":
        if not text.startswith(PRIVATE_KEY_PREFIX):
            raise ValueError(f"Private key must start with {PRIVATE_KEY_PREFIX!r}")
        return cls.from_private_key(ctx, int(text[len(PRIVATE_KEY_PREFIX):], 16))


def shared_key(ctx, private_key: int, public_key: Union[PublicKey, Tuple[int, int]]) -> Tuple[int, int]:
    """ECDH shared point ``sk * pub``, used directly as the sponge key"""
    key = validate_public_key(ctx, public_key)
    point = ctx.babyjub.mul(key.as_tuple(), private_key)
    if ctx.babyjub.is_identity(point):
        raise InvalidPublicKeyError("Shared key is the identity")
    return point
