"""Core data types for hierbaps.

Dataclasses for partitions, the cluster hierarchy, the final partition
table and the diagnostics that travel with it.
"""

from __future__ import annotations

import csv
import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import numpy as np

# Label given to a sequence at levels below the node where its lineage stopped.
UNRESOLVED = -1


@dataclass
class Partition:
    """Assignment of every sequence to exactly one cluster.

    Attributes:
        labels: Cluster label per sequence, values in 0..n_clusters-1.
        n_clusters: Number of clusters K. Every cluster is non-empty.
    """

    labels: np.ndarray  # (N,)
    n_clusters: int

    def __post_init__(self) -> None:
        self.labels = np.asarray(self.labels, dtype=np.int64)
        if self.labels.ndim != 1 or self.labels.size == 0:
            raise ValueError("Partition needs a non-empty 1-D label vector")
        if self.n_clusters < 1:
            raise ValueError(f"n_clusters must be >= 1, got {self.n_clusters}")
        if self.labels.min() < 0 or self.labels.max() >= self.n_clusters:
            raise ValueError(
                f"Labels must lie in 0..{self.n_clusters - 1}"
            )
        if np.any(np.bincount(self.labels, minlength=self.n_clusters) == 0):
            raise ValueError("Partition contains an empty cluster")

    @classmethod
    def from_labels(cls, labels) -> Partition:
        """Build a partition from arbitrary (non-contiguous) labels.

        Labels are renumbered 0..K-1 in order of first appearance.
        """
        raw = np.asarray(labels)
        _, first_idx, inverse = np.unique(
            raw, return_index=True, return_inverse=True
        )
        # np.unique sorts by value; reorder so the first-seen label becomes 0.
        order = np.argsort(np.argsort(first_idx))
        return cls(labels=order[inverse.ravel()], n_clusters=len(first_idx))

    @classmethod
    def single(cls, n: int) -> Partition:
        """All n sequences in one cluster."""
        return cls(labels=np.zeros(n, dtype=np.int64), n_clusters=1)

    @property
    def n_sequences(self) -> int:
        return len(self.labels)

    def sizes(self) -> np.ndarray:
        return np.bincount(self.labels, minlength=self.n_clusters)

    def members(self, cluster: int) -> np.ndarray:
        """Indices of the sequences in *cluster*, ascending."""
        return np.flatnonzero(self.labels == cluster)

    def clusters(self) -> list[np.ndarray]:
        return [self.members(k) for k in range(self.n_clusters)]

    def normalized(self) -> Partition:
        """Return the same partition labelled in order of first appearance."""
        return Partition.from_labels(self.labels)

    def copy(self) -> Partition:
        return Partition(labels=self.labels.copy(), n_clusters=self.n_clusters)


class TerminalReason(str, Enum):
    """Why a hierarchy node has no further children (or ``SPLIT`` if it has)."""

    SPLIT = "split"
    MAX_DEPTH = "max_depth"
    TOO_SMALL = "too_small"
    NO_VARIABLE_SITES = "no_variable_sites"
    SINGLE_CLUSTER = "single_cluster"
    RESOURCE_LIMIT = "resource_limit"
    TIME_BUDGET = "time_budget"


@dataclass
class HierarchyNode:
    """One cluster in the nested partition tree.

    Attributes:
        members: Indices into the full SNP matrix, ascending.
        level: Hierarchy level (0 for the root, 1 for top-level clusters).
        label: Cluster label at ``level`` (-1 for the root).
        log_ml: Log marginal likelihood of the partition found inside this
            node (NaN if the node was never searched).
        n_sites: Variable sites in the node's sub-alignment.
        n_rounds: Optimizer rounds spent on the node's best restart.
        converged: Whether the node's search reached a local optimum.
        early_terminated: Whether the node's search hit the time budget.
        reason: Why the node stopped (``SPLIT`` when it has children).
        children: Child clusters at ``level + 1``.
    """

    members: np.ndarray
    level: int
    label: int = -1
    log_ml: float = float("nan")
    n_sites: int = 0
    n_rounds: int = 0
    converged: bool = True
    early_terminated: bool = False
    reason: TerminalReason | None = None
    children: list[HierarchyNode] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def is_terminal(self) -> bool:
        return not self.children

    def walk(self) -> Iterator[HierarchyNode]:
        """Yield this node and all descendants depth-first (pre-order)."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def depth(self) -> int:
        """Deepest level reached in this subtree."""
        return max(node.level for node in self.walk())


@dataclass
class DiagnosticNote:
    """A non-fatal condition met during the run."""

    category: str
    level: int
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"category": self.category, "level": self.level, "message": self.message}


@dataclass
class LevelDiagnostics:
    """Summary of one hierarchy level.

    Attributes:
        level: 1-based hierarchy level.
        n_clusters: Number of clusters carrying a label at this level.
        log_ml: Sum of the log marginal likelihoods of the partitions that
            produced this level's clusters.
        node_log_ml: Per-parent log marginal likelihood, in tree order.
        n_rounds: Optimizer rounds summed over those partitions.
        converged: True if every contributing search converged.
        early_terminated: True if any contributing search was cut short.
    """

    level: int
    n_clusters: int = 0
    log_ml: float = 0.0
    node_log_ml: list[float] = field(default_factory=list)
    n_rounds: int = 0
    converged: bool = True
    early_terminated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "n_clusters": self.n_clusters,
            "log_ml": self.log_ml,
            "node_log_ml": list(self.node_log_ml),
            "n_rounds": self.n_rounds,
            "converged": self.converged,
            "early_terminated": self.early_terminated,
        }


@dataclass
class HierarchyDiagnostics:
    """Diagnostics attached to a hierarchical clustering run."""

    levels: list[LevelDiagnostics] = field(default_factory=list)
    notes: list[DiagnosticNote] = field(default_factory=list)
    early_terminated: bool = False
    elapsed_seconds: float = 0.0
    n_sequences: int = 0
    n_sites: int = 0

    @property
    def converged(self) -> bool:
        return all(lv.converged for lv in self.levels)

    def note(self, category: type[Warning] | str, level: int, message: str) -> None:
        name = category if isinstance(category, str) else category.__name__
        self.notes.append(DiagnosticNote(category=name, level=level, message=message))

    def to_dict(self) -> dict[str, Any]:
        return {
            "n_sequences": self.n_sequences,
            "n_sites": self.n_sites,
            "elapsed_seconds": self.elapsed_seconds,
            "converged": self.converged,
            "early_terminated": self.early_terminated,
            "levels": [lv.to_dict() for lv in self.levels],
            "notes": [n.to_dict() for n in self.notes],
        }

    def save(self, path: Path) -> None:
        """Save diagnostics to a JSON file."""
        path.write_text(json.dumps(self.to_dict(), indent=2))


@dataclass(frozen=True)
class PartitionTable:
    """Final per-sequence cluster labels, one column per hierarchy level.

    Row order matches the input sequence order. Labels are only meaningful
    as a grouping; their integer values may change between runs.
    ``UNRESOLVED`` marks levels below where a lineage stopped.
    """

    sequence_ids: tuple[str, ...]
    labels: np.ndarray  # (N, n_levels)

    def __post_init__(self) -> None:
        labels = np.array(self.labels, dtype=np.int64)
        if labels.ndim != 2 or labels.shape[0] != len(self.sequence_ids):
            raise ValueError(
                f"Label matrix shape {labels.shape} does not match "
                f"{len(self.sequence_ids)} sequences"
            )
        labels.setflags(write=False)
        object.__setattr__(self, "sequence_ids", tuple(self.sequence_ids))
        object.__setattr__(self, "labels", labels)

    def __len__(self) -> int:
        return len(self.sequence_ids)

    @property
    def n_levels(self) -> int:
        return self.labels.shape[1]

    @property
    def column_names(self) -> list[str]:
        return ["Isolate"] + [f"level {lv}" for lv in range(1, self.n_levels + 1)]

    def level(self, level: int) -> np.ndarray:
        """Labels at a 1-based hierarchy level."""
        if not 1 <= level <= self.n_levels:
            raise ValueError(f"level must be in 1..{self.n_levels}, got {level}")
        return self.labels[:, level - 1]

    def rows(self) -> list[tuple]:
        return [
            (sid, *(int(x) for x in row))
            for sid, row in zip(self.sequence_ids, self.labels)
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": self.column_names,
            "rows": [list(r) for r in self.rows()],
        }

    def write_csv(self, path: Path) -> None:
        """Write the table as CSV: ``Isolate, level 1, level 2, ...``."""
        with open(path, "w", newline="") as fh:
            writer = csv.writer(fh)
            writer.writerow(self.column_names)
            writer.writerows(self.rows())


@dataclass
class SimulationGroundTruth:
    """Ground truth from the simulator for benchmarking.

    Attributes:
        sequence_ids: Simulated sequence identifiers, in output order.
        population: Top-level population index per sequence.
        subpopulation: Sub-population index per sequence, unique across
            populations.
        n_sites: Alignment length.
    """

    sequence_ids: list[str]
    population: np.ndarray
    subpopulation: np.ndarray
    n_sites: int = 0

    def level(self, level: int) -> np.ndarray:
        """True labels at a 1-based hierarchy level."""
        if level == 1:
            return self.population
        if level == 2:
            return self.subpopulation
        raise ValueError(f"Ground truth has levels 1 and 2, got {level}")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to JSON-compatible dict."""
        return {
            "sequence_ids": self.sequence_ids,
            "population": self.population.tolist(),
            "subpopulation": self.subpopulation.tolist(),
            "n_sites": self.n_sites,
        }

    def save(self, path: Path) -> None:
        """Save ground truth to JSON file."""
        path.write_text(json.dumps(self.to_dict(), indent=2))
