"""Greedy local search over partitions, with isolated random restarts.

THE CORE SEARCH. Each restart owns a partition and its allele-count table
and hill-climbs the Dirichlet-multinomial marginal likelihood with three
kinds of moves, tried in this order every round:

- merge the best pair of clusters,
- split a cluster around its two most distant members,
- reassign each sequence to its best other cluster or a new singleton.

A move is accepted only if it strictly increases the score, so every
restart terminates. Restarts share nothing but the input matrix and run
sequentially or in a process pool; the best final score wins.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

import numpy as np
from scipy.cluster.hierarchy import fcluster, linkage
from scipy.spatial.distance import pdist

from hierbaps.counts import (
    ClusterStats,
    apply_merge,
    apply_move,
    apply_split,
    count,
    count_rows,
)
from hierbaps.likelihood import PRIOR_MODES, DirichletMultinomial
from hierbaps.snp import SNPMatrix
from hierbaps.types import Partition

logger = logging.getLogger(__name__)

# Smallest score gain that counts as an improvement.
MIN_IMPROVEMENT = 1e-9


class ConvergenceMode(str, Enum):
    FIXED_ROUNDS = "fixed_rounds"
    UNTIL_LOCAL_OPTIMUM = "until_local_optimum"


class SearchState(str, Enum):
    INITIALIZED = "initialized"
    SEARCHING = "searching"
    CONVERGED = "converged"
    TERMINAL = "terminal"


@dataclass
class SearchConfig:
    """Configuration for one level of local search.

    Attributes:
        max_clusters: Upper bound on the number of clusters.
        n_restarts: Number of independent restarts.
        concentration: Dirichlet concentration per allele.
        prior: ``"symmetric"`` or ``"per_site"`` (see DirichletMultinomial).
        convergence_mode: ``"until_local_optimum"`` keeps sweeping until a
            round accepts nothing; ``"fixed_rounds"`` stops after max_rounds.
        max_rounds: Round limit for ``"fixed_rounds"``.
        random_seed: Seed for the restart seeds; None for fresh entropy.
        n_jobs: Worker processes for restarts (1 runs them in-process).
        seeded_start: Start restart 0 from a Hamming-distance hierarchical
            clustering instead of a random partition.
    """

    max_clusters: int = 20
    n_restarts: int = 10
    concentration: float = 1.0
    prior: str = "symmetric"
    convergence_mode: str = ConvergenceMode.UNTIL_LOCAL_OPTIMUM.value
    max_rounds: int = 5
    random_seed: int | None = None
    n_jobs: int = 1
    seeded_start: bool = True

    def validate(self) -> None:
        if self.max_clusters < 1:
            raise ValueError(f"max_clusters must be >= 1, got {self.max_clusters}")
        if self.n_restarts < 1:
            raise ValueError(f"n_restarts must be >= 1, got {self.n_restarts}")
        if self.concentration <= 0:
            raise ValueError(f"concentration must be > 0, got {self.concentration}")
        if self.prior not in PRIOR_MODES:
            raise ValueError(f"prior must be one of {PRIOR_MODES}, got {self.prior!r}")
        ConvergenceMode(self.convergence_mode)
        if self.max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {self.max_rounds}")
        if self.n_jobs < 1:
            raise ValueError(f"n_jobs must be >= 1, got {self.n_jobs}")


@dataclass
class RestartResult:
    """Outcome of one restart."""

    restart: int
    labels: np.ndarray
    log_ml: float
    n_rounds: int
    converged: bool
    early_terminated: bool = False
    state: SearchState = SearchState.SEARCHING


@dataclass
class SearchResult:
    """Best partition over all restarts.

    Attributes:
        partition: Best partition, labelled in order of first appearance.
        log_ml: Its log marginal likelihood.
        n_rounds: Rounds run by the winning restart.
        converged: Whether the winning restart reached a local optimum.
        state: ``TERMINAL`` after restart selection, ``CONVERGED`` for the
            immediate single-cluster answer on invariant input.
        restart_log_ml: Final score of every restart that ran.
        best_restart: Index of the winning restart.
        early_terminated: True if the time budget cut the search short.
        degenerate: True if the input had no variation at all.
    """

    partition: Partition
    log_ml: float
    n_rounds: int = 0
    converged: bool = True
    state: SearchState = SearchState.TERMINAL
    restart_log_ml: list[float] = field(default_factory=list)
    best_restart: int = 0
    early_terminated: bool = False
    degenerate: bool = False

    @property
    def n_clusters(self) -> int:
        return self.partition.n_clusters


class SearchContext:
    """One restart's privately owned search state.

    Holds a partition, its allele-count table and the running score, and
    applies greedy moves to them in place.
    """

    def __init__(
        self,
        matrix: SNPMatrix,
        partition: Partition,
        model: DirichletMultinomial,
        max_clusters: int,
    ):
        self.codes = matrix.codes
        self.model = model
        self.max_clusters = max_clusters
        self.partition = partition.copy()
        self.stats: ClusterStats = count(self.partition, matrix)
        self.score = model.score(self.stats)
        self.state = SearchState.INITIALIZED

    def rescore(self) -> float:
        """Recompute the score from scratch (drops accumulated rounding)."""
        self.score = self.model.score(self.stats)
        return self.score

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    def merge_phase(self) -> int:
        """Apply the best improving merge until none is left."""
        accepted = 0
        while self.partition.n_clusters > 1:
            deltas = self.model.pairwise_merge_deltas(self.stats)
            flat = int(np.argmax(deltas))
            best = deltas.flat[flat]
            if best <= MIN_IMPROVEMENT:
                break
            a, b = divmod(flat, deltas.shape[1])
            apply_merge(self.partition, self.stats, a, b)
            self.score += best
            accepted += 1
        return accepted

    def split_phase(self) -> int:
        """Try splitting every cluster in two; keep improving splits."""
        accepted = 0
        k = 0
        while k < self.partition.n_clusters:
            if self.partition.n_clusters >= self.max_clusters:
                break
            members = self.partition.members(k)
            if len(members) >= 2:
                in_b = split_proposal(self.codes[members])
                if in_b is not None:
                    rows_b = members[in_b]
                    counts_b = count_rows(self.codes[rows_b], self.stats.n_alleles)
                    delta = self.model.split_delta(self.stats, k, counts_b, len(rows_b))
                    if delta > MIN_IMPROVEMENT:
                        apply_split(self.partition, self.stats, self.codes, k, rows_b)
                        self.score += delta
                        accepted += 1
            k += 1
        return accepted

    def reassign_phase(self) -> int:
        """Offer every sequence its best other cluster or a new singleton.

        On equal gains an existing cluster beats a new one, and the lower
        label beats the higher.
        """
        accepted = 0
        labels = self.partition.labels
        for i in range(len(labels)):
            k = self.partition.n_clusters
            src = int(labels[i])
            row = self.codes[i]
            gains = self.model.add_deltas(self.stats, row)
            can_open = k < self.max_clusters and self.stats.sizes[src] > 1
            best_dst, best_gain = best_destination(gains, src, can_open)
            if not np.isfinite(best_gain):
                continue
            delta = self.model.remove_delta(self.stats, row, src) + best_gain
            if delta > MIN_IMPROVEMENT:
                apply_move(self.partition, self.stats, self.codes, i, best_dst)
                self.score += delta
                accepted += 1
        return accepted

    def sweep(self) -> int:
        """One round: merges, then splits, then reassignments.

        Returns:
            Number of accepted moves; 0 means the partition is a local
            optimum and the context moves to ``CONVERGED``.
        """
        self.state = SearchState.SEARCHING
        accepted = self.merge_phase()
        accepted += self.split_phase()
        accepted += self.reassign_phase()
        if accepted == 0:
            self.state = SearchState.CONVERGED
        return accepted


def best_destination(gains: np.ndarray, src: int, can_open: bool) -> tuple[int, float]:
    """Pick where one sequence should go from its (K + 1,) add gains.

    The source cluster is excluded. An existing cluster wins over a new one
    on equal gain, and among existing clusters the lowest label wins.
    """
    k = len(gains) - 1
    gains = gains.copy()
    gains[src] = -np.inf
    best_dst = int(np.argmax(gains[:k]))
    best_gain = float(gains[best_dst])
    if can_open and gains[k] > best_gain:
        best_dst, best_gain = k, float(gains[k])
    return best_dst, best_gain


def split_proposal(codes: np.ndarray) -> np.ndarray | None:
    """Two-way split of a block of sequences by Hamming distance.

    Seeds are the member farthest from the first member and the member
    farthest from that one; every member joins the nearer seed (ties go
    to the first seed).

    Returns:
        Boolean mask of the second group, or None if all rows are identical.
    """
    dist_first = (codes != codes[0]).sum(axis=1)
    seed_a = int(np.argmax(dist_first))
    dist_a = (codes != codes[seed_a]).sum(axis=1)
    seed_b = int(np.argmax(dist_a))
    if dist_a[seed_b] == 0:
        return None
    dist_b = (codes != codes[seed_b]).sum(axis=1)
    return dist_b < dist_a


def initial_partition(
    codes: np.ndarray,
    max_clusters: int,
    rng: np.random.Generator,
    seeded: bool = False,
) -> Partition:
    """Starting partition for one restart.

    Seeded starts cut a complete-linkage tree of Hamming distances into at
    most *max_clusters* clusters. Random starts draw a cluster count
    uniformly from 1..max_clusters and assign sequences uniformly.
    """
    n = codes.shape[0]
    k_max = min(max_clusters, n)
    if n < 2 or k_max == 1:
        return Partition.single(n)
    if seeded and codes.shape[1] > 0:
        tree = linkage(pdist(codes, metric="hamming"), method="complete")
        return Partition.from_labels(fcluster(tree, t=k_max, criterion="maxclust"))
    k0 = int(rng.integers(1, k_max + 1))
    return Partition.from_labels(rng.integers(0, k0, size=n))


def _run_restart(
    matrix: SNPMatrix,
    config: SearchConfig,
    restart: int,
    seed: int,
    deadline: float | None,
) -> RestartResult:
    """Run one isolated restart to convergence, round limit or deadline."""
    rng = np.random.default_rng(seed)
    model = DirichletMultinomial.for_matrix(matrix, config.concentration, config.prior)
    start = initial_partition(
        matrix.codes,
        config.max_clusters,
        rng,
        seeded=config.seeded_start and restart == 0,
    )
    ctx = SearchContext(matrix, start, model, config.max_clusters)
    fixed = ConvergenceMode(config.convergence_mode) is ConvergenceMode.FIXED_ROUNDS

    n_rounds = 0
    early = False
    while True:
        if deadline is not None and time.monotonic() > deadline:
            early = True
            break
        if fixed and n_rounds >= config.max_rounds:
            break
        accepted = ctx.sweep()
        n_rounds += 1
        if accepted == 0:
            break

    return RestartResult(
        restart=restart,
        labels=ctx.partition.labels.copy(),
        log_ml=ctx.rescore(),
        n_rounds=n_rounds,
        converged=ctx.state is SearchState.CONVERGED,
        early_terminated=early,
        state=ctx.state,
    )


def _run_restart_job(args: tuple) -> RestartResult:
    return _run_restart(*args)


class LocalSearch:
    """Multi-restart greedy partition optimizer.

    Usage:
        search = LocalSearch(SearchConfig(max_clusters=20, random_seed=1))
        result = search.fit(matrix)
    """

    def __init__(self, config: SearchConfig | None = None):
        self.config = config or SearchConfig()
        self.config.validate()

    def fit(self, matrix: SNPMatrix, deadline: float | None = None) -> SearchResult:
        """Find the best partition of *matrix*.

        Args:
            matrix: Sub-alignment to partition. Invariant sites may be
                present but carry no signal.
            deadline: Optional ``time.monotonic()`` value after which no new
                round or restart starts; the best result so far is returned.

        Returns:
            SearchResult for the best restart.
        """
        cfg = self.config
        model = DirichletMultinomial.for_matrix(matrix, cfg.concentration, cfg.prior)

        if matrix.is_invariant or matrix.n_sequences == 1:
            single = Partition.single(matrix.n_sequences)
            log_ml = model.score(count(single, matrix))
            logger.debug(
                "No variation among %d sequences; single cluster", matrix.n_sequences
            )
            return SearchResult(
                partition=single,
                log_ml=log_ml,
                n_rounds=0,
                converged=True,
                state=SearchState.CONVERGED,
                restart_log_ml=[log_ml],
                degenerate=matrix.is_invariant,
            )

        base_rng = np.random.default_rng(cfg.random_seed)
        seeds = [int(s) for s in base_rng.integers(0, 2**31, size=cfg.n_restarts)]
        jobs = [(matrix, cfg, r, seeds[r], deadline) for r in range(cfg.n_restarts)]

        logger.debug(
            "Local search: %d sequences, %d sites, %d restarts, %d jobs",
            matrix.n_sequences, matrix.n_sites, cfg.n_restarts, cfg.n_jobs,
        )

        if cfg.n_jobs > 1 and cfg.n_restarts > 1:
            with ProcessPoolExecutor(max_workers=min(cfg.n_jobs, cfg.n_restarts)) as pool:
                results = list(pool.map(_run_restart_job, jobs))
        else:
            results = []
            for job in jobs:
                # The first restart always runs so a partition exists.
                if results and deadline is not None and time.monotonic() > deadline:
                    break
                results.append(_run_restart(*job))

        for res in results:
            logger.debug(
                "Restart %d/%d: LL=%.4f, K=%d, %d rounds, converged=%s",
                res.restart + 1, cfg.n_restarts, res.log_ml,
                int(res.labels.max()) + 1, res.n_rounds, res.converged,
            )

        # Highest score wins; ties go to the lowest restart index.
        best = max(results, key=lambda r: (r.log_ml, -r.restart))
        restart_lls = [r.log_ml for r in results]
        early = len(results) < cfg.n_restarts or any(r.early_terminated for r in results)

        if len(restart_lls) >= 2 and max(restart_lls) - min(restart_lls) > 10:
            logger.debug(
                "Restarts disagree: LL range across restarts = %.2f",
                max(restart_lls) - min(restart_lls),
            )

        return SearchResult(
            partition=Partition.from_labels(best.labels),
            log_ml=best.log_ml,
            n_rounds=best.n_rounds,
            converged=best.converged,
            state=SearchState.TERMINAL,
            restart_log_ml=restart_lls,
            best_restart=best.restart,
            early_terminated=early,
        )

    def sweep(self, matrix: SNPMatrix, partition: Partition) -> tuple[Partition, int]:
        """Run a single round from *partition*; returns the result and move count."""
        cfg = self.config
        model = DirichletMultinomial.for_matrix(matrix, cfg.concentration, cfg.prior)
        ctx = SearchContext(matrix, partition, model, cfg.max_clusters)
        accepted = ctx.sweep()
        return ctx.partition, accepted
