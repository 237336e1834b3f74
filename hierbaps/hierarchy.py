"""Hierarchical recursion controller.

Runs the local search on the full sequence set, then re-runs it inside
each resulting cluster on the sites still variable there, level by level,
down to ``max_depth``. Pending clusters sit in an explicit FIFO work queue
rather than on the call stack.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from hierbaps.aggregate import aggregate, summarize_levels
from hierbaps.counts import count
from hierbaps.errors import DegenerateInputWarning, ResourceExhaustion
from hierbaps.likelihood import PRIOR_MODES, DirichletMultinomial
from hierbaps.optimizer import ConvergenceMode, LocalSearch, SearchConfig, SearchResult
from hierbaps.snp import SNPMatrix
from hierbaps.types import (
    HierarchyDiagnostics,
    HierarchyNode,
    Partition,
    PartitionTable,
    TerminalReason,
)

logger = logging.getLogger(__name__)


@dataclass
class HierarchyConfig:
    """Configuration for hierarchical clustering.

    Attributes:
        max_depth: Number of hierarchy levels (>= 1).
        max_clusters_per_level: Upper bound on clusters in any one search.
        min_cluster_size: Clusters smaller than this are not re-partitioned.
        num_restarts: Independent restarts per search.
        dirichlet_concentration: Dirichlet concentration per allele.
        prior: ``"symmetric"`` or ``"per_site"``.
        random_seed: Seed for reproducible runs; None for fresh entropy.
        convergence_mode: ``"until_local_optimum"`` or ``"fixed_rounds"``.
        max_rounds: Round limit used by ``"fixed_rounds"``.
        n_jobs: Worker processes for restarts.
        time_budget: Wall-clock seconds for the whole run; None for no limit.
        max_branch_cells: Largest sequences x sites sub-alignment a branch
            may search; larger branches stop early. None for no limit.
    """

    max_depth: int = 2
    max_clusters_per_level: int = 20
    min_cluster_size: int = 5
    num_restarts: int = 10
    dirichlet_concentration: float = 1.0
    prior: str = "symmetric"
    random_seed: int | None = None
    convergence_mode: str = ConvergenceMode.UNTIL_LOCAL_OPTIMUM.value
    max_rounds: int = 5
    n_jobs: int = 1
    time_budget: float | None = None
    max_branch_cells: int | None = None

    def validate(self) -> None:
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be >= 1, got {self.max_depth}")
        if self.min_cluster_size < 1:
            raise ValueError(f"min_cluster_size must be >= 1, got {self.min_cluster_size}")
        if self.time_budget is not None and self.time_budget <= 0:
            raise ValueError(f"time_budget must be > 0, got {self.time_budget}")
        if self.max_branch_cells is not None and self.max_branch_cells < 1:
            raise ValueError(f"max_branch_cells must be >= 1, got {self.max_branch_cells}")
        if self.prior not in PRIOR_MODES:
            raise ValueError(f"prior must be one of {PRIOR_MODES}, got {self.prior!r}")
        self.search_config().validate()

    def search_config(self, random_seed: int | None = None) -> SearchConfig:
        return SearchConfig(
            max_clusters=self.max_clusters_per_level,
            n_restarts=self.num_restarts,
            concentration=self.dirichlet_concentration,
            prior=self.prior,
            convergence_mode=self.convergence_mode,
            max_rounds=self.max_rounds,
            random_seed=random_seed,
            n_jobs=self.n_jobs,
        )


@dataclass
class HierarchyResult:
    """Output of a hierarchical clustering run."""

    table: PartitionTable
    diagnostics: HierarchyDiagnostics
    root: HierarchyNode
    config: HierarchyConfig = field(default_factory=HierarchyConfig)

    def to_dict(self) -> dict[str, Any]:
        return {
            "partition": self.table.to_dict(),
            "diagnostics": self.diagnostics.to_dict(),
        }

    def save(self, directory: Path) -> None:
        """Write ``partition.csv`` and ``diagnostics.json`` to *directory*."""
        directory.mkdir(parents=True, exist_ok=True)
        self.table.write_csv(directory / "partition.csv")
        self.diagnostics.save(directory / "diagnostics.json")


class HierarchicalClustering:
    """Nested population-structure inference.

    Usage:
        hc = HierarchicalClustering(HierarchyConfig(max_depth=2, random_seed=1))
        result = hc.fit(snp_matrix)
        result.table.write_csv(Path("partition.csv"))
    """

    def __init__(self, config: HierarchyConfig | None = None):
        self.config = config or HierarchyConfig()
        self.config.validate()

    def fit(self, matrix: SNPMatrix) -> HierarchyResult:
        """Build the cluster hierarchy for *matrix*.

        Args:
            matrix: SNP matrix over all sequences. Sites invariant among a
                node's members are dropped before that node is searched.

        Returns:
            HierarchyResult with the partition table (rows in input order),
            diagnostics and the node tree.
        """
        cfg = self.config
        t0 = time.monotonic()
        deadline = t0 + cfg.time_budget if cfg.time_budget is not None else None
        base_rng = np.random.default_rng(cfg.random_seed)

        diagnostics = HierarchyDiagnostics(
            n_sequences=matrix.n_sequences, n_sites=matrix.n_sites
        )
        root = HierarchyNode(members=np.arange(matrix.n_sequences), level=0)
        next_label = [0] * (cfg.max_depth + 1)

        logger.info(
            "Hierarchical clustering: %d sequences, %d sites, max_depth=%d",
            matrix.n_sequences, matrix.n_sites, cfg.max_depth,
        )

        queue: deque[HierarchyNode] = deque([root])
        while queue:
            node = queue.popleft()
            seed = None
            if cfg.random_seed is not None:
                seed = int(base_rng.integers(0, 2**31))
            self._expand(node, matrix, deadline, seed, next_label, diagnostics)
            for child in node.children:
                if child.reason is not None:
                    continue
                if child.level >= cfg.max_depth:
                    child.reason = TerminalReason.MAX_DEPTH
                elif child.size < cfg.min_cluster_size:
                    child.reason = TerminalReason.TOO_SMALL
                else:
                    queue.append(child)

        diagnostics.levels = summarize_levels(root, cfg.max_depth)
        diagnostics.elapsed_seconds = time.monotonic() - t0
        table = aggregate(root, matrix.sequence_ids, cfg.max_depth)

        for lv in diagnostics.levels:
            logger.info(
                "Level %d: %d clusters, log ML=%.4f", lv.level, lv.n_clusters, lv.log_ml
            )
        return HierarchyResult(
            table=table, diagnostics=diagnostics, root=root, config=cfg
        )

    # ------------------------------------------------------------------
    # Node expansion
    # ------------------------------------------------------------------

    def _expand(
        self,
        node: HierarchyNode,
        matrix: SNPMatrix,
        deadline: float | None,
        seed: int | None,
        next_label: list[int],
        diagnostics: HierarchyDiagnostics,
    ) -> None:
        """Search one node and attach its child clusters.

        The root always receives level-1 children (a single one when no
        structure is found) so every sequence gets a level-1 label. Other
        nodes keep no children unless the search finds two or more clusters.
        """
        cfg = self.config
        is_root = node.level == 0
        child_level = node.level + 1

        if not is_root and deadline is not None and time.monotonic() > deadline:
            node.reason = TerminalReason.TIME_BUDGET
            diagnostics.early_terminated = True
            diagnostics.note(
                ResourceExhaustion, child_level,
                f"time budget spent before searching a cluster of {node.size}",
            )
            logger.warning("Time budget spent; cluster of %d left unsplit", node.size)
            return

        sub = matrix.subset(node.members).variable_sites()
        node.n_sites = sub.n_sites

        if cfg.max_branch_cells is not None and sub.n_cells > cfg.max_branch_cells:
            node.reason = TerminalReason.RESOURCE_LIMIT
            diagnostics.note(
                ResourceExhaustion, child_level,
                f"sub-alignment of {sub.n_sequences} x {sub.n_sites} exceeds "
                f"max_branch_cells={cfg.max_branch_cells}",
            )
            logger.warning(
                "Branch of %d sequences x %d sites over the cell limit; not searched",
                sub.n_sequences, sub.n_sites,
            )
            if is_root:
                # Level 1 is the unsearched one-cluster partition; score it.
                model = DirichletMultinomial.for_matrix(
                    sub, cfg.dirichlet_concentration, cfg.prior
                )
                node.log_ml = model.score(count(Partition.single(node.size), sub))
                self._attach(node, [node.members], next_label, node.reason)
            return

        result = LocalSearch(cfg.search_config(seed)).fit(sub, deadline=deadline)
        self._record(node, result)

        if result.early_terminated:
            diagnostics.early_terminated = True
            diagnostics.note(
                ResourceExhaustion, child_level,
                f"search over {node.size} sequences stopped by the time budget "
                f"after {len(result.restart_log_ml)} restarts",
            )
            logger.warning(
                "Time budget hit while splitting %d sequences; using best so far",
                node.size,
            )

        if result.degenerate:
            node.reason = TerminalReason.NO_VARIABLE_SITES
            diagnostics.note(
                DegenerateInputWarning, child_level,
                f"no variable sites among {node.size} sequences",
            )
            logger.info("No variable sites among %d sequences", node.size)
        elif result.n_clusters == 1:
            node.reason = TerminalReason.SINGLE_CLUSTER
        else:
            node.reason = TerminalReason.SPLIT

        if node.reason is TerminalReason.SPLIT or is_root:
            groups = [node.members[idx] for idx in result.partition.clusters()]
            inherited = None if node.reason is TerminalReason.SPLIT else node.reason
            self._attach(node, groups, next_label, inherited)

        logger.debug(
            "Level %d node (%d seqs, %d sites): %d clusters, LL=%.4f",
            child_level, node.size, sub.n_sites, result.n_clusters, result.log_ml,
        )

    @staticmethod
    def _record(node: HierarchyNode, result: SearchResult) -> None:
        node.log_ml = result.log_ml
        node.n_rounds = result.n_rounds
        node.converged = result.converged
        node.early_terminated = result.early_terminated

    @staticmethod
    def _attach(
        node: HierarchyNode,
        groups: list[np.ndarray],
        next_label: list[int],
        reason: TerminalReason | None,
    ) -> None:
        level = node.level + 1
        for members in groups:
            node.children.append(
                HierarchyNode(
                    members=np.sort(members),
                    level=level,
                    label=next_label[level],
                    reason=reason,
                )
            )
            next_label[level] += 1


def hierbaps(matrix: SNPMatrix, **options: Any) -> HierarchyResult:
    """Run hierarchical clustering with keyword options from HierarchyConfig."""
    return HierarchicalClustering(HierarchyConfig(**options)).fit(matrix)
