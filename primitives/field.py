"""
BN254 scalar field used by every hash, curve and circuit in the protocol.

Values crossing a module boundary are carried as ``galois`` field arrays so
an out-of-range integer can never silently enter the pipeline: construction
rejects anything at or above the modulus instead of reducing it.
"""

from typing import Iterable, List, Sequence

import galois

from .errors import FieldRangeError

SNARK_FIELD_SIZE = 21888242871839275222246405745257275088548364400416034343698204186575808495617
FIELD_BITS = SNARK_FIELD_SIZE.bit_length()  # 254

# Multiplicative generator of the field; supplying it keeps galois from
# factoring p - 1 when the class is built.
PRIMITIVE_ELEMENT = 5


def build_field():
    """Create the galois field class for the BN254 scalar field"""
    return galois.GF(SNARK_FIELD_SIZE, primitive_element=PRIMITIVE_ELEMENT, verify=False)


def is_field_element(value: int) -> bool:
    return isinstance(value, int) and 0 <= value < SNARK_FIELD_SIZE


def check_field_element(value: int, name: str = "value") -> int:
    """Return ``value`` as int if it is a canonical field residue"""
    value = int(value)
    if not 0 <= value < SNARK_FIELD_SIZE:
        raise FieldRangeError(f"{name} is not a field element: {value}")
    return value


def check_field_elements(values: Iterable[int], name: str = "values") -> List[int]:
    return [check_field_element(v, f"{name}[{i}]") for i, v in enumerate(values)]


def to_ints(array: Sequence) -> List[int]:
    """Convert a galois array (or any int sequence) to a list of Python ints"""
    return [int(v) for v in array]


def int_to_le_bytes(value: int, length: int = 32) -> bytes:
    return int(value).to_bytes(length, "little")
