import pytest

from ledger.acc_queue import AccQueue
from ledger.errors import AccessControlError, FieldRangeError, InputValidationError, PhaseViolationError
from primitives.field import SNARK_FIELD_SIZE
from primitives.merkle import compute_root

OWNER = "0x" + "11" * 20


def filled_queue(ctx, leaves, sub_depth=1):
    queue = AccQueue(ctx, sub_depth, OWNER)
    for leaf in leaves:
        queue.enqueue(leaf, OWNER)
    return queue


@pytest.mark.parametrize("sub_depth, count", [
    (1, 1), (1, 5), (1, 7), (1, 12),
    (2, 1), (2, 24), (2, 25), (2, 26), (2, 60),
])
def test_merged_root_matches_full_tree(ctx, sub_depth, count):
    leaves = list(range(1, count + 1))
    queue = filled_queue(ctx, leaves, sub_depth=sub_depth)
    assert queue.merge_sub_roots(0, OWNER)
    assert queue.merge(3, OWNER) == compute_root(ctx, leaves, 3)


def test_merge_in_steps(ctx):
    leaves = list(range(1, 13))
    queue = filled_queue(ctx, leaves)
    assert not queue.merge_sub_roots(1, OWNER)
    assert not queue.merge_sub_roots(1, OWNER)
    assert queue.merge_sub_roots(1, OWNER)
    # further calls are no-ops
    assert queue.merge_sub_roots(1, OWNER)
    assert queue.merge(2, OWNER) == compute_root(ctx, leaves, 2)


def test_empty_queue_merges_to_zero_root(ctx):
    queue = AccQueue(ctx, 1, OWNER)
    queue.merge_sub_roots(0, OWNER)
    assert queue.merge(2, OWNER) == compute_root(ctx, [], 2)


def test_fill_pads_partial_subtree(ctx):
    queue = filled_queue(ctx, [1, 2], sub_depth=1)
    assert queue.fill() == ctx.hash([1, 2, 0, 0, 0])


def test_enqueue_during_merge_restarts_it(ctx):
    queue = filled_queue(ctx, list(range(1, 7)))
    assert not queue.merge_sub_roots(1, OWNER)
    queue.enqueue(7, OWNER)
    assert queue.merge_sub_roots(0, OWNER)
    assert queue.merge(2, OWNER) == compute_root(ctx, list(range(1, 8)), 2)


def test_merged_queue_rejects_leaves_until_reset(ctx):
    queue = filled_queue(ctx, [1, 2])
    queue.merge_sub_roots(0, OWNER)
    queue.merge(2, OWNER)
    with pytest.raises(PhaseViolationError):
        queue.enqueue(3, OWNER)
    with pytest.raises(PhaseViolationError):
        queue.merge(2, OWNER)

    queue.reset_merge(OWNER)
    queue.reset_merge(OWNER)
    queue.enqueue(3, OWNER)
    queue.merge_sub_roots(0, OWNER)
    assert queue.merge(2, OWNER) == compute_root(ctx, [1, 2, 3], 2)


def test_merge_requires_sub_roots_and_covering_depth(ctx):
    queue = filled_queue(ctx, list(range(1, 7)))
    with pytest.raises(PhaseViolationError):
        queue.merge(2, OWNER)
    queue.merge_sub_roots(0, OWNER)
    with pytest.raises(InputValidationError):
        queue.merge(1, OWNER)


def test_owner_and_range_checks(ctx):
    queue = AccQueue(ctx, 1, OWNER)
    with pytest.raises(AccessControlError):
        queue.enqueue(1, "0x" + "22" * 20)
    with pytest.raises(FieldRangeError):
        queue.enqueue(SNARK_FIELD_SIZE, OWNER)
    with pytest.raises(InputValidationError):
        queue.merge_sub_roots(-1, OWNER)
