"""Baby Jubjub twisted Edwards curve over the BN254 scalar field."""

from typing import Tuple

from .field import SNARK_FIELD_SIZE

Point = Tuple[int, int]


class BabyJubJub:
    """Affine twisted Edwards arithmetic: a*x^2 + y^2 = 1 + d*x^2*y^2"""

    PRIME = SNARK_FIELD_SIZE
    A = 168700
    D = 168696

    GENERATOR: Point = (
        995203441582195749578291179787384436505546430278305826713579947235728471134,
        5472060717959818805561601436314318772137091100104008585924551046643952123905,
    )
    BASE8: Point = (
        5299619240641551281634865583518297030282874472190772894086521144482721001553,
        16950150798460657717958625567821834550301663161624707787222815936182638968203,
    )
    ORDER = 21888242871839275222246405745257275088614511777268538073601725287587578984328
    SUBORDER = ORDER >> 3
    IDENTITY: Point = (0, 1)

    def _inv(self, value: int) -> int:
        return pow(value, -1, self.PRIME)

    def add(self, p1: Point, p2: Point) -> Point:
        p = self.PRIME
        x1, y1 = p1
        x2, y2 = p2
        beta = x1 * y2 % p
        gamma = y1 * x2 % p
        delta = (y1 - self.A * x1) * (x2 + y2) % p
        tau = beta * gamma % p
        dtau = self.D * tau % p
        x3 = (beta + gamma) * self._inv((1 + dtau) % p) % p
        y3 = (delta + self.A * beta - gamma) * self._inv((1 - dtau) % p) % p
        return (x3, y3)

    def mul(self, point: Point, scalar: int) -> Point:
        """Double-and-add scalar multiplication"""
        result = self.IDENTITY
        addend = point
        scalar = int(scalar)
        while scalar:
            if scalar & 1:
                result = self.add(result, addend)
            addend = self.add(addend, addend)
            scalar >>= 1
        return result

    def mul_base(self, scalar: int) -> Point:
        return self.mul(self.BASE8, scalar)

    def in_curve(self, point: Point) -> bool:
        p = self.PRIME
        x, y = (int(c) for c in point)
        if not (0 <= x < p and 0 <= y < p):
            return False
        x2 = x * x % p
        y2 = y * y % p
        return (self.A * x2 + y2) % p == (1 + self.D * x2 % p * y2) % p

    def is_identity(self, point: Point) -> bool:
        return tuple(int(c) for c in point) == self.IDENTITY

    def is_valid_public_key(self, point: Point) -> bool:
        """On the curve, not the identity, and in the prime-order subgroup"""
        if not self.in_curve(point) or self.is_identity(point):
            return False
        return self.is_identity(self.mul(point, self.SUBORDER))
