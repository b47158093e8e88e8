"""EdDSA over Baby Jubjub with Poseidon as the challenge hash."""

from dataclasses import dataclass
from typing import List, Tuple, Union

from .babyjub import BabyJubJub
from .errors import SignatureError
from .field import check_field_element, int_to_le_bytes
from .keys import PublicKey, blake2b_512


@dataclass(frozen=True)
class Signature:
    r8: Tuple[int, int]
    s: int

    def as_list(self) -> List[int]:
        return [self.r8[0], self.r8[1], self.s]

    @classmethod
    def from_list(cls, values) -> "Signature":
        if len(values) != 3:
            raise SignatureError(f"Signature has {len(values)} elements, expected 3")
        return cls((int(values[0]), int(values[1])), int(values[2]))


def _challenge(ctx, r8: Tuple[int, int], public_key: Tuple[int, int], message: int) -> int:
    return ctx.hash([r8[0], r8[1], public_key[0], public_key[1], message])


def sign(ctx, private_key: int, message: int) -> Signature:
    """Sign a single field element; raises FieldRangeError for anything else"""
    curve = ctx.babyjub
    message = check_field_element(message, "message")
    public_key = curve.mul_base(private_key)

    # Deterministic nonce, bound to both key and message
    nonce_seed = blake2b_512(int_to_le_bytes(private_key) + int_to_le_bytes(message))
    r = int.from_bytes(nonce_seed, "little") % BabyJubJub.SUBORDER
    r8 = curve.mul_base(r)

    h = _challenge(ctx, r8, public_key, message)
    s = (r + h * private_key) % BabyJubJub.SUBORDER
    return Signature(r8, s)


def verify(ctx, message: int, signature: Signature, public_key: Union[PublicKey, Tuple[int, int]]) -> bool:
    """
    Check ``S * Base8 == R8 + H(R8, A, M) * A``.

    circomlibjs checks ``S * Base8 == R8 + 8 * H * A`` and takes ``A`` from the
    pruned scalar shifted right by three bits, so signatures made with
    circomlibjs do not verify here, and ours do not verify there.
    """
    curve = ctx.babyjub
    a = public_key.as_tuple() if isinstance(public_key, PublicKey) else tuple(public_key)

    if not 0 <= int(message) < ctx.prime:
        return False
    if not 0 <= signature.s < BabyJubJub.SUBORDER:
        return False
    if not curve.in_curve(a) or curve.is_identity(a):
        return False
    if not curve.in_curve(signature.r8):
        return False

    h = _challenge(ctx, signature.r8, a, int(message))
    left = curve.mul_base(signature.s)
    right = curve.add(signature.r8, curve.mul(a, h))
    return left == right
