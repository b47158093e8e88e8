"""
Poseidon duplex-sponge authenticated encryption.

State width 4 (rate 3, capacity 1). The key is an ECDH shared point; the
plaintext length travels out of band and is bound into the initial state.
Ciphertext is produced by field addition so the same construction can be
checked inside an arithmetic circuit.
"""

import logging
from typing import List, Sequence, Tuple

from .errors import AuthenticationError, FieldRangeError, MalformedCiphertextError
from .field import check_field_elements, to_ints

logger = logging.getLogger(__name__)

SPONGE_WIDTH = 4
SPONGE_RATE = 3
TWO_128 = 1 << 128


def padded_length(length: int) -> int:
    return -(-length // SPONGE_RATE) * SPONGE_RATE


def ciphertext_length(length: int) -> int:
    return padded_length(length) + 1


def _initial_state(ctx, key: Sequence[int], nonce: int, length: int) -> List[int]:
    if not 0 <= nonce < TWO_128:
        raise FieldRangeError(f"Sponge nonce must be below 2^128: {nonce}")
    k0, k1 = check_field_elements(key, "key")
    return [0, k0, k1, (nonce + length * TWO_128) % ctx.prime]


def encrypt(ctx, plaintext: Sequence[int], key: Tuple[int, int], nonce: int = 0):
    """Encrypt field elements; returns a field array of ciphertext plus tag"""
    fr = ctx.field
    values = check_field_elements(plaintext, "plaintext")
    length = len(values)
    values += [0] * (padded_length(length) - length)

    state = _initial_state(ctx, key, nonce, length)
    ciphertext: List[int] = []
    for i in range(0, len(values), SPONGE_RATE):
        state = ctx.permute(state)
        block = fr(state[1:4]) + fr(values[i:i + SPONGE_RATE])
        state[1:4] = to_ints(block)
        ciphertext.extend(state[1:4])

    state = ctx.permute(state)
    ciphertext.append(state[1])
    return fr(ciphertext)


def decrypt(ctx, ciphertext: Sequence[int], key: Tuple[int, int], nonce: int, length: int):
    """
    Decrypt and authenticate.

    Raises MalformedCiphertextError when the ciphertext shape does not match
    ``length`` or the padding is non-zero, and AuthenticationError when the
    tag does not verify.
    """
    fr = ctx.field
    if length < 0:
        raise MalformedCiphertextError(f"Negative plaintext length: {length}")
    expected = ciphertext_length(length)
    if len(ciphertext) != expected:
        raise MalformedCiphertextError(
            f"Ciphertext has {len(ciphertext)} elements, expected {expected}")
    try:
        values = check_field_elements(ciphertext, "ciphertext")
    except FieldRangeError as e:
        raise MalformedCiphertextError(str(e)) from e

    state = _initial_state(ctx, key, nonce, length)
    plaintext: List[int] = []
    for i in range(0, expected - 1, SPONGE_RATE):
        state = ctx.permute(state)
        block = values[i:i + SPONGE_RATE]
        plaintext.extend(to_ints(fr(block) - fr(state[1:4])))
        state[1:4] = block

    state = ctx.permute(state)
    if state[1] != values[-1]:
        raise AuthenticationError("Ciphertext authentication tag mismatch")

    if any(v != 0 for v in plaintext[length:]):
        raise MalformedCiphertextError("Non-zero plaintext padding")

    return fr(plaintext[:length])


def verify_tag(ctx, ciphertext: Sequence[int], key: Tuple[int, int], nonce: int, length: int) -> bool:
    try:
        decrypt(ctx, ciphertext, key, nonce, length)
    except AuthenticationError:
        return False
    return True


__all__ = [
    "SPONGE_WIDTH",
    "SPONGE_RATE",
    "padded_length",
    "ciphertext_length",
    "encrypt",
    "decrypt",
    "verify_tag",
]
