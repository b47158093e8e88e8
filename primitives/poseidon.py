"""
Circom-compatible Poseidon permutation and hash over the BN254 scalar field.

Round constants and the MDS matrix are derived with the Grain LFSR from the
Poseidon reference parameter generator, so the output matches circomlib's
``poseidon`` for every supported width.
"""

import logging
import time
from typing import List, Sequence

from .field import FIELD_BITS, SNARK_FIELD_SIZE

logger = logging.getLogger(__name__)

FULL_ROUNDS = 8
PARTIAL_ROUNDS = {2: 56, 3: 57, 4: 56, 5: 60, 6: 60, 7: 63, 8: 64, 9: 63}
SBOX_ALPHA = 5


def _to_bits(value: int, width: int) -> List[int]:
    return [int(b) for b in format(value, f"0{width}b")]


class GrainLFSR:
    """80-bit self-shrinking Grain LFSR seeded with the Poseidon parameters"""

    STATE_SIZE = 80
    TAPS = (62, 51, 38, 23, 13, 0)

    def __init__(self, field_bits: int, width: int, full_rounds: int, partial_rounds: int):
        bits = (
            _to_bits(1, 2)              # prime field
            + _to_bits(0, 4)            # x^alpha s-box
            + _to_bits(field_bits, 12)
            + _to_bits(width, 12)
            + _to_bits(full_rounds, 10)
            + _to_bits(partial_rounds, 10)
            + [1] * 30
        )
        self._state = bits
        self._pos = 0
        for _ in range(160):
            self._clock()

    def _clock(self) -> int:
        state, pos, size = self._state, self._pos, self.STATE_SIZE
        new_bit = 0
        for tap in self.TAPS:
            new_bit ^= state[(pos + tap) % size]
        state[pos] = new_bit
        self._pos = (pos + 1) % size
        return new_bit

    def next_bit(self) -> int:
        # Bits are drawn in pairs; the second is kept only when the first is 1.
        while True:
            select = self._clock()
            bit = self._clock()
            if select == 1:
                return bit

    def next_int(self, num_bits: int) -> int:
        value = 0
        for _ in range(num_bits):
            value = (value << 1) | self.next_bit()
        return value

    def next_field_element(self, num_bits: int, modulus: int) -> int:
        """Rejection-sample a value below ``modulus``"""
        while True:
            value = self.next_int(num_bits)
            if value < modulus:
                return value


class Poseidon:
    """Poseidon instance for a fixed state width ``t``"""

    PRIME = SNARK_FIELD_SIZE

    def __init__(self, width: int):
        if width not in PARTIAL_ROUNDS:
            raise ValueError(f"Unsupported Poseidon width: {width}")

        start = time.time()
        self.width = width
        self.full_rounds = FULL_ROUNDS
        self.partial_rounds = PARTIAL_ROUNDS[width]

        lfsr = GrainLFSR(FIELD_BITS, width, self.full_rounds, self.partial_rounds)
        num_constants = (self.full_rounds + self.partial_rounds) * width
        self.round_constants = [
            lfsr.next_field_element(FIELD_BITS, self.PRIME) for _ in range(num_constants)
        ]
        self.mds_matrix = self._cauchy_matrix(lfsr)

        logger.debug(
            f"Generated Poseidon parameters for t={width} in {time.time() - start:.2f}s")

    def _cauchy_matrix(self, lfsr: GrainLFSR) -> List[List[int]]:
        p = self.PRIME
        t = self.width
        while True:
            # MDS samples are reduced rather than rejection-sampled
            samples = [lfsr.next_int(FIELD_BITS) % p for _ in range(2 * t)]
            if len(set(samples)) != len(samples):
                continue
            xs, ys = samples[:t], samples[t:]
            if any((x + y) % p == 0 for x in xs for y in ys):
                continue
            return [[pow(x + y, p - 2, p) for y in ys] for x in xs]

    def permute(self, state: Sequence[int]) -> List[int]:
        """Apply the full Poseidon permutation to a width-t state"""
        t = self.width
        p = self.PRIME
        if len(state) != t:
            raise ValueError(f"Poseidon t={t} expects {t} state elements, got {len(state)}")

        state = [int(s) % p for s in state]
        constants = self.round_constants
        mds = self.mds_matrix
        half_full = self.full_rounds // 2
        total_rounds = self.full_rounds + self.partial_rounds

        for r in range(total_rounds):
            offset = r * t
            state = [(s + constants[offset + i]) % p for i, s in enumerate(state)]
            if r < half_full or r >= half_full + self.partial_rounds:
                state = [pow(s, SBOX_ALPHA, p) for s in state]
            else:
                state[0] = pow(state[0], SBOX_ALPHA, p)
            state = [sum(m * s for m, s in zip(row, state)) % p for row in mds]

        return state

    def hash(self, inputs: Sequence[int]) -> int:
        if len(inputs) != self.width - 1:
            raise ValueError(
                f"Poseidon t={self.width} hashes {self.width - 1} inputs, got {len(inputs)}")
        return self.permute([0, *inputs])[0]
