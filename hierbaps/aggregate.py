"""Result aggregation: hierarchy tree -> partition table and level summaries."""

from __future__ import annotations

import csv
from collections.abc import Sequence
from pathlib import Path

import numpy as np

from hierbaps.types import (
    UNRESOLVED,
    HierarchyNode,
    LevelDiagnostics,
    PartitionTable,
)


def aggregate(
    root: HierarchyNode, sequence_ids: Sequence[str], max_depth: int
) -> PartitionTable:
    """Flatten the hierarchy into one label column per level.

    Each sequence carries the label of every node on its lineage, and
    ``UNRESOLVED`` below the deepest one. Rows follow *sequence_ids*.
    """
    labels = np.full((len(sequence_ids), max_depth), UNRESOLVED, dtype=np.int64)
    for node in root.walk():
        if 1 <= node.level <= max_depth:
            labels[node.members, node.level - 1] = node.label
    return PartitionTable(sequence_ids=tuple(sequence_ids), labels=labels)


def summarize_levels(root: HierarchyNode, max_depth: int) -> list[LevelDiagnostics]:
    """Per-level cluster counts, likelihoods and convergence flags.

    A level's likelihood is the sum over the searches whose clusters form
    that level (the parents of its nodes).
    """
    levels = [LevelDiagnostics(level=lv) for lv in range(1, max_depth + 1)]
    for node in root.walk():
        if 1 <= node.level <= max_depth:
            levels[node.level - 1].n_clusters += 1
        if node.children and node.level < max_depth:
            lv = levels[node.level]
            lv.log_ml += node.log_ml
            lv.node_log_ml.append(node.log_ml)
            lv.n_rounds += node.n_rounds
            lv.converged = lv.converged and node.converged
            lv.early_terminated = lv.early_terminated or node.early_terminated
    return levels


def read_partition_csv(path: Path) -> PartitionTable:
    """Read a table written by :meth:`PartitionTable.write_csv`."""
    with open(path, newline="") as fh:
        reader = csv.reader(fh)
        header = next(reader, None)
        if not header or header[0] != "Isolate":
            raise ValueError(f"{path} is not a partition table")
        ids: list[str] = []
        rows: list[list[int]] = []
        for record in reader:
            if not record:
                continue
            ids.append(record[0])
            rows.append([int(x) for x in record[1:]])
    labels = np.array(rows, dtype=np.int64).reshape(len(ids), len(header) - 1)
    return PartitionTable(sequence_ids=tuple(ids), labels=labels)
