"""
Arity-5 accumulator queue with a two-phase merge.

Leaves are hashed incrementally into subtrees of ``5 ** sub_depth`` leaves.
``merge_sub_roots`` folds the completed subtree roots (plus a zero-filled
root for any partial subtree) into the smallest quinary tree covering them;
``merge`` then extends that root with empty subtrees up to the requested
depth. The result equals the root of a depth-``depth`` tree over every
enqueued leaf, zero-padded to capacity.
"""

import logging
from typing import List, Optional

from primitives.field import is_field_element
from primitives.merkle import ARITY

from .errors import AccessControlError, FieldRangeError, InputValidationError, PhaseViolationError

logger = logging.getLogger(__name__)


class AccQueue:

    def __init__(self, ctx, sub_depth: int, owner: str, zero_value: int = 0, name: str = "acc_queue"):
        if sub_depth <= 0:
            raise InputValidationError("Accumulator subtree depth must be positive")
        self.ctx = ctx
        self.sub_depth = sub_depth
        self.owner = owner
        self.name = name
        self._zeros = [int(zero_value)]

        self.num_leaves = 0
        self.levels: List[List[int]] = [[] for _ in range(sub_depth)]
        self.sub_roots: List[int] = []

        self._fill_root: Optional[int] = None
        self._pending: Optional[List[int]] = None
        self._queued: List[int] = []
        self.sub_trees_merged = False
        self.small_sr_root: Optional[int] = None
        self.small_sr_depth: Optional[int] = None
        self.merged = False
        self.merged_depth: Optional[int] = None
        self.root: Optional[int] = None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def zero(self, level: int) -> int:
        while len(self._zeros) <= level:
            self._zeros.append(self.ctx.hash([self._zeros[-1]] * ARITY))
        return self._zeros[level]

    def _only_owner(self, caller: str):
        if caller != self.owner:
            raise AccessControlError(f"{caller} does not control {self.name}")

    @property
    def subtree_capacity(self) -> int:
        return ARITY ** self.sub_depth

    def _partial_root(self) -> Optional[int]:
        """Root of the current partial subtree with zero leaves, or None if empty"""
        carry: Optional[int] = None
        for level in range(self.sub_depth):
            nodes = list(self.levels[level])
            if carry is not None:
                nodes.append(carry)
            if not nodes:
                continue
            nodes.extend([self.zero(level)] * (ARITY - len(nodes)))
            carry = self.ctx.hash(nodes)
        return carry

    def _covering_root(self, nodes: List[int], base_level: int):
        """Smallest quinary root over ``nodes`` whose empty slots sit at ``base_level``"""
        depth = 0
        while ARITY ** depth < len(nodes):
            depth += 1
        level_nodes = list(nodes)
        for level in range(depth):
            level_nodes.extend([self.zero(base_level + level)] * (-len(level_nodes) % ARITY))
            level_nodes = [
                self.ctx.hash(level_nodes[i:i + ARITY])
                for i in range(0, len(level_nodes), ARITY)
            ]
        return level_nodes[0], depth

    # ------------------------------------------------------------------
    # operations
    # ------------------------------------------------------------------

    def enqueue(self, leaf: int, caller: str) -> int:
        self._only_owner(caller)
        if not is_field_element(leaf):
            raise FieldRangeError(f"Leaf {leaf} is not a field element")
        if self.merged:
            raise PhaseViolationError(f"{self.name} is merged; reset it before enqueueing")

        # an unfinished merge is stale once a new leaf arrives
        if self._pending is not None:
            self._clear_merge_progress()

        index = self.num_leaves
        self.levels[0].append(int(leaf))
        level = 0
        while len(self.levels[level]) == ARITY:
            parent = self.ctx.hash(self.levels[level])
            self.levels[level] = []
            if level + 1 == self.sub_depth:
                self.sub_roots.append(parent)
                break
            self.levels[level + 1].append(parent)
            level += 1

        self.num_leaves += 1
        return index

    def fill(self) -> int:
        """Zero-pad the current partial subtree into a temporary subroot"""
        partial = self._partial_root()
        self._fill_root = self.zero(self.sub_depth) if partial is None else partial
        return self._fill_root

    def merge_sub_roots(self, num_sub_roots: int, caller: str) -> bool:
        """
        Queue up to ``num_sub_roots`` pending subroots (0 means all).

        Returns True once every subroot is queued and the covering root is
        known. Calling again after that is a no-op.
        """
        self._only_owner(caller)
        if num_sub_roots < 0:
            raise InputValidationError("Number of subroots must not be negative")
        if self.sub_trees_merged:
            return True

        if self._pending is None:
            pending = list(self.sub_roots)
            if self.num_leaves % self.subtree_capacity or not pending:
                pending.append(self.fill())
            self._pending = pending
            self._queued = []

        remaining = len(self._pending) - len(self._queued)
        take = remaining if num_sub_roots == 0 else min(num_sub_roots, remaining)
        self._queued.extend(self._pending[len(self._queued):len(self._queued) + take])

        if len(self._queued) == len(self._pending):
            self.small_sr_root, self.small_sr_depth = self._covering_root(self._queued, self.sub_depth)
            self.sub_trees_merged = True
            logger.debug(
                f"{self.name}: merged {len(self._queued)} subroots, covering depth "
                f"{self.sub_depth + self.small_sr_depth}")
        return self.sub_trees_merged

    @property
    def covering_depth(self) -> Optional[int]:
        if self.small_sr_depth is None:
            return None
        return self.sub_depth + self.small_sr_depth

    def merge(self, depth: int, caller: str) -> int:
        self._only_owner(caller)
        if self.merged:
            raise PhaseViolationError(f"{self.name} is already merged")
        if not self.sub_trees_merged:
            raise PhaseViolationError(f"{self.name}: subroots are not merged")
        if depth < self.covering_depth:
            raise InputValidationError(
                f"Depth {depth} is below the covering depth {self.covering_depth}")

        root = self.small_sr_root
        for level in range(self.covering_depth, depth):
            root = self.ctx.hash([root] + [self.zero(level)] * (ARITY - 1))

        self.root = root
        self.merged_depth = depth
        self.merged = True
        logger.info(f"{self.name}: merged {self.num_leaves} leaves at depth {depth}")
        return root

    def _clear_merge_progress(self):
        self._fill_root = None
        self._pending = None
        self._queued = []
        self.sub_trees_merged = False
        self.small_sr_root = None
        self.small_sr_depth = None

    def reset_merge(self, caller: str):
        """Forget any merge so enqueueing can resume; idempotent"""
        self._only_owner(caller)
        self._clear_merge_progress()
        self.merged = False
        self.merged_depth = None
        self.root = None
