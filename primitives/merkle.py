"""Quinary Poseidon merkle tree with zero-padded empty subtrees."""

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .field import check_field_element

ARITY = 5


def zero_hashes(ctx, depth: int, zero_value: int = 0) -> List[int]:
    """Roots of empty subtrees for every level ``0..depth``"""
    zeros = [int(zero_value)]
    for _ in range(depth):
        zeros.append(ctx.hash([zeros[-1]] * ARITY))
    return zeros


@dataclass
class MerkleProof:
    path_elements: List[List[int]]
    path_indices: List[int]


class QuinaryTree:
    """Sparse fixed-depth tree; unset positions hold ``zero_value``"""

    def __init__(self, ctx, depth: int, zero_value: int = 0):
        self.ctx = ctx
        self.depth = depth
        self.zeros = zero_hashes(ctx, depth, zero_value)
        self._nodes: Dict[Tuple[int, int], int] = {}
        self.next_index = 0

    @property
    def capacity(self) -> int:
        return ARITY ** self.depth

    @property
    def root(self) -> int:
        return self._node(self.depth, 0)

    def _node(self, level: int, index: int) -> int:
        return self._nodes.get((level, index), self.zeros[level])

    def leaf(self, index: int) -> int:
        return self._node(0, index)

    def insert(self, leaf: int) -> int:
        index = self.next_index
        self.update(index, leaf)
        return index

    def update(self, index: int, leaf: int):
        if not 0 <= index < self.capacity:
            raise IndexError(f"Leaf index {index} outside tree of capacity {self.capacity}")
        self._nodes[(0, index)] = check_field_element(leaf, "leaf")
        self.next_index = max(self.next_index, index + 1)

        for level in range(self.depth):
            parent = index // ARITY
            first = parent * ARITY
            children = [self._node(level, first + i) for i in range(ARITY)]
            self._nodes[(level + 1, parent)] = self.ctx.hash(children)
            index = parent

    def path(self, index: int) -> MerkleProof:
        if not 0 <= index < self.capacity:
            raise IndexError(f"Leaf index {index} outside tree of capacity {self.capacity}")
        elements: List[List[int]] = []
        indices: List[int] = []
        for level in range(self.depth):
            position = index % ARITY
            first = index - position
            elements.append([
                self._node(level, first + i) for i in range(ARITY) if i != position
            ])
            indices.append(position)
            index //= ARITY
        return MerkleProof(elements, indices)


def root_from_path(ctx, leaf: int, proof: MerkleProof) -> int:
    node = int(leaf)
    for siblings, position in zip(proof.path_elements, proof.path_indices):
        children = list(siblings)
        children.insert(position, node)
        node = ctx.hash(children)
    return node


def compute_root(ctx, leaves: Sequence[int], depth: int, zero_value: int = 0) -> int:
    """Root over ``leaves`` zero-padded to ``5 ** depth``"""
    zeros = zero_hashes(ctx, depth, zero_value)
    if len(leaves) > ARITY ** depth:
        raise ValueError(f"{len(leaves)} leaves exceed capacity {ARITY ** depth}")
    level_nodes = [check_field_element(v, "leaf") for v in leaves]
    for level in range(depth):
        padded = level_nodes + [zeros[level]] * (-len(level_nodes) % ARITY)
        level_nodes = [
            ctx.hash(padded[i:i + ARITY]) for i in range(0, len(padded), ARITY)
        ]
        if not level_nodes:
            return zeros[depth]
    return level_nodes[0] if level_nodes else zeros[depth]
