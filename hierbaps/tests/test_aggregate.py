"""Tests for flattening the hierarchy into a partition table."""

import dataclasses

import numpy as np
import pytest

from hierbaps.aggregate import aggregate, read_partition_csv, summarize_levels
from hierbaps.types import UNRESOLVED, HierarchyNode, PartitionTable, TerminalReason


def _tree():
    """Root over 6 sequences: {0,1,2} splits into {0,2} and {1}; {3,4,5} stops."""
    left = HierarchyNode(
        members=np.array([0, 1, 2]), level=1, label=0, log_ml=-3.0, n_rounds=2,
        reason=TerminalReason.SPLIT,
    )
    left.children = [
        HierarchyNode(members=np.array([0, 2]), level=2, label=0),
        HierarchyNode(members=np.array([1]), level=2, label=1),
    ]
    right = HierarchyNode(
        members=np.array([3, 4, 5]), level=1, label=1,
        reason=TerminalReason.SINGLE_CLUSTER,
    )
    root = HierarchyNode(
        members=np.arange(6), level=0, log_ml=-10.0, n_rounds=3,
        reason=TerminalReason.SPLIT, children=[left, right],
    )
    return root


IDS = ["a", "b", "c", "d", "e", "f"]


class TestAggregate:
    def test_labels(self):
        table = aggregate(_tree(), IDS, max_depth=2)
        np.testing.assert_array_equal(table.level(1), [0, 0, 0, 1, 1, 1])
        np.testing.assert_array_equal(
            table.level(2), [0, 1, 0, UNRESOLVED, UNRESOLVED, UNRESOLVED]
        )

    def test_extra_levels_unresolved(self):
        table = aggregate(_tree(), IDS, max_depth=3)
        assert table.n_levels == 3
        np.testing.assert_array_equal(table.level(3), UNRESOLVED)

    def test_rows(self):
        table = aggregate(_tree(), IDS, max_depth=2)
        assert table.rows()[1] == ("b", 0, 1)
        assert len(table) == 6

    def test_walk_is_preorder(self):
        levels = [n.level for n in _tree().walk()]
        assert levels == [0, 1, 2, 2, 1]


class TestSummarizeLevels:
    def test_counts_and_likelihoods(self):
        levels = summarize_levels(_tree(), max_depth=2)
        assert [lv.n_clusters for lv in levels] == [2, 2]
        assert levels[0].log_ml == -10.0
        assert levels[0].n_rounds == 3
        assert levels[1].node_log_ml == [-3.0]
        assert levels[1].n_rounds == 2

    def test_to_dict(self):
        levels = summarize_levels(_tree(), max_depth=2)
        d = levels[1].to_dict()
        assert d["level"] == 2
        assert d["n_clusters"] == 2


class TestPartitionTable:
    def test_frozen(self):
        table = aggregate(_tree(), IDS, max_depth=2)
        with pytest.raises(dataclasses.FrozenInstanceError):
            table.labels = np.zeros((6, 2))

    def test_labels_read_only(self):
        table = aggregate(_tree(), IDS, max_depth=2)
        with pytest.raises(ValueError):
            table.labels[0, 0] = 5

    def test_level_bounds(self):
        table = aggregate(_tree(), IDS, max_depth=2)
        with pytest.raises(ValueError):
            table.level(0)
        with pytest.raises(ValueError):
            table.level(3)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            PartitionTable(sequence_ids=("a", "b"), labels=np.zeros((3, 1)))

    def test_csv(self, tmp_path):
        table = aggregate(_tree(), IDS, max_depth=2)
        path = tmp_path / "partition.csv"
        table.write_csv(path)
        lines = path.read_text().splitlines()
        assert lines[0] == "Isolate,level 1,level 2"
        assert lines[2] == "b,0,1"
        assert lines[4] == "d,1,-1"
        back = read_partition_csv(path)
        assert back.sequence_ids == table.sequence_ids
        np.testing.assert_array_equal(back.labels, table.labels)

    def test_read_rejects_other_csv(self, tmp_path):
        path = tmp_path / "other.csv"
        path.write_text("id,x\na,1\n")
        with pytest.raises(ValueError):
            read_partition_csv(path)
