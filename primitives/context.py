"""Explicit crypto context shared by every primitive call."""

import logging
import threading
from typing import Dict, Iterable, Sequence

from .babyjub import BabyJubJub
from .field import SNARK_FIELD_SIZE, build_field, check_field_elements
from .poseidon import PARTIAL_ROUNDS, Poseidon

logger = logging.getLogger(__name__)


class CryptoContext:
    """
    Field, curve and Poseidon instances for one process.

    Construct once at start-up and pass by reference; Poseidon parameters are
    generated on first use of each width and cached on the context.
    """

    def __init__(self):
        self.field = build_field()
        self.prime = SNARK_FIELD_SIZE
        self.babyjub = BabyJubJub()
        self._poseidon: Dict[int, Poseidon] = {}
        self._lock = threading.Lock()
        logger.info("Crypto context initialized")

    def poseidon(self, width: int) -> Poseidon:
        instance = self._poseidon.get(width)
        if instance is None:
            with self._lock:
                instance = self._poseidon.get(width)
                if instance is None:
                    instance = Poseidon(width)
                    self._poseidon[width] = instance
        return instance

    def hash(self, inputs: Sequence[int]) -> int:
        """Poseidon hash of 1..8 field elements"""
        width = len(inputs) + 1
        if width not in PARTIAL_ROUNDS:
            raise ValueError(f"Cannot hash {len(inputs)} inputs")
        return self.poseidon(width).hash([int(v) for v in inputs])

    def permute(self, state: Sequence[int]):
        return self.poseidon(len(state)).permute(state)

    def elements(self, values: Iterable[int], name: str = "values"):
        """Build a field array, rejecting any value at or above the modulus"""
        return self.field(check_field_elements(values, name))
