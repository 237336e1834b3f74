"""Allele count model: per-cluster, per-site allele counts.

These counts are the sufficient statistic of the Dirichlet-multinomial
likelihood. The table lives in a preallocated arena indexed by normalized
cluster label; moves update only the rows they touch, and an emptied
cluster is removed by relabelling the last cluster into its slot.
"""

from __future__ import annotations

import numpy as np

from hierbaps.snp import SNPMatrix
from hierbaps.types import Partition


class ClusterStats:
    """Allele counts for every (cluster, site, allele) of one partition.

    Attributes:
        counts: (K, S, A) view of the live clusters' allele counts, where A
            is the largest site alphabet (unused allele slots stay zero).
        sizes: (K,) cluster sizes.
    """

    def __init__(self, n_sites: int, n_alleles: int, capacity: int = 4):
        self.n_sites = n_sites
        self.n_alleles = n_alleles
        self.n_clusters = 0
        self._sites = np.arange(n_sites)
        self._counts = np.zeros((max(capacity, 1), n_sites, n_alleles), dtype=np.int64)
        self._sizes = np.zeros(max(capacity, 1), dtype=np.int64)

    @property
    def counts(self) -> np.ndarray:
        return self._counts[: self.n_clusters]

    @property
    def sizes(self) -> np.ndarray:
        return self._sizes[: self.n_clusters]

    def copy(self) -> ClusterStats:
        other = ClusterStats(self.n_sites, self.n_alleles, capacity=len(self._sizes))
        other.n_clusters = self.n_clusters
        other._counts[:] = self._counts
        other._sizes[:] = self._sizes
        return other

    # ------------------------------------------------------------------
    # Arena management
    # ------------------------------------------------------------------

    def _reserve(self, n: int) -> None:
        capacity = len(self._sizes)
        if n <= capacity:
            return
        new_capacity = max(n, 2 * capacity)
        counts = np.zeros((new_capacity, self.n_sites, self.n_alleles), dtype=np.int64)
        counts[:capacity] = self._counts
        sizes = np.zeros(new_capacity, dtype=np.int64)
        sizes[:capacity] = self._sizes
        self._counts = counts
        self._sizes = sizes

    def new_cluster(self) -> int:
        """Open an empty cluster slot and return its label."""
        self._reserve(self.n_clusters + 1)
        k = self.n_clusters
        self._counts[k] = 0
        self._sizes[k] = 0
        self.n_clusters += 1
        return k

    def remove_cluster(self, k: int) -> int | None:
        """Delete cluster *k*; the last cluster takes over label *k*.

        Returns:
            The old label of the cluster relabelled to *k*, or None if *k*
            was already the last cluster.
        """
        last = self.n_clusters - 1
        moved = None
        if k != last:
            self._counts[k] = self._counts[last]
            self._sizes[k] = self._sizes[last]
            moved = last
        self._counts[last] = 0
        self._sizes[last] = 0
        self.n_clusters -= 1
        return moved

    # ------------------------------------------------------------------
    # Incremental updates
    # ------------------------------------------------------------------

    def add(self, codes_row: np.ndarray, k: int) -> None:
        self._counts[k, self._sites, codes_row] += 1
        self._sizes[k] += 1

    def remove(self, codes_row: np.ndarray, k: int) -> None:
        self._counts[k, self._sites, codes_row] -= 1
        self._sizes[k] -= 1

    def move(self, codes_row: np.ndarray, src: int, dst: int) -> int | None:
        """Move one sequence from *src* to *dst* (``dst == K`` opens a cluster).

        Only the two affected rows change. If *src* becomes empty it is
        removed; the return value is then the old label of the cluster
        relabelled into *src* (see :meth:`remove_cluster`), else None.
        """
        if dst == self.n_clusters:
            self.new_cluster()
        self.add(codes_row, dst)
        self.remove(codes_row, src)
        if self._sizes[src] == 0:
            return self.remove_cluster(src)
        return None

    def merge(self, a: int, b: int) -> int | None:
        """Fold cluster *b* into *a* and remove *b*."""
        self._counts[a] += self._counts[b]
        self._sizes[a] += self._sizes[b]
        return self.remove_cluster(b)

    def split(self, k: int, counts_b: np.ndarray, size_b: int) -> int:
        """Carve the given counts out of cluster *k* into a new cluster."""
        new = self.new_cluster()
        self._counts[new] = counts_b
        self._sizes[new] = size_b
        self._counts[k] -= counts_b
        self._sizes[k] -= size_b
        return new

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_accounting(self, n_sequences: int) -> bool:
        """Counts summed over clusters equal *n_sequences* at every site."""
        per_site = self.counts.sum(axis=(0, 2))
        return bool(np.all(per_site == n_sequences)) and int(self.sizes.sum()) == n_sequences

    def equals(self, other: ClusterStats) -> bool:
        return (
            self.n_clusters == other.n_clusters
            and np.array_equal(self.counts, other.counts)
            and np.array_equal(self.sizes, other.sizes)
        )


def count_rows(codes: np.ndarray, n_alleles: int) -> np.ndarray:
    """(S, A) allele counts of a block of code rows."""
    n_sites = codes.shape[1]
    out = np.zeros((n_sites, n_alleles), dtype=np.int64)
    np.add.at(out, (np.broadcast_to(np.arange(n_sites), codes.shape), codes), 1)
    return out


def count(partition: Partition | np.ndarray, sub_alignment: SNPMatrix) -> ClusterStats:
    """Allele counts from scratch for a partition of *sub_alignment*.

    Args:
        partition: A Partition, or raw labels (renumbered 0..K-1 in order of
            first appearance).
        sub_alignment: The matrix whose rows the partition refers to.

    Returns:
        A fresh ClusterStats.
    """
    if not isinstance(partition, Partition):
        partition = Partition.from_labels(partition)
    if partition.n_sequences != sub_alignment.n_sequences:
        raise ValueError(
            f"Partition covers {partition.n_sequences} sequences, "
            f"matrix has {sub_alignment.n_sequences}"
        )
    codes = sub_alignment.codes
    stats = ClusterStats(
        sub_alignment.n_sites,
        sub_alignment.max_alphabet_size,
        capacity=partition.n_clusters + 1,
    )
    stats.n_clusters = partition.n_clusters
    n_sites = sub_alignment.n_sites
    np.add.at(
        stats._counts,
        (
            np.broadcast_to(partition.labels[:, None], codes.shape),
            np.broadcast_to(np.arange(n_sites)[None, :], codes.shape),
            codes,
        ),
        1,
    )
    stats._sizes[: partition.n_clusters] = partition.sizes()
    return stats


# ---------------------------------------------------------------------------
# Partition + stats kept in step
# ---------------------------------------------------------------------------


def _relabel(partition: Partition, moved: int | None, slot: int) -> None:
    if moved is not None:
        partition.labels[partition.labels == moved] = slot
    partition.n_clusters -= 1


def apply_move(
    partition: Partition, stats: ClusterStats, codes: np.ndarray, i: int, dst: int
) -> None:
    """Move sequence *i* to cluster *dst* (``K`` for a new singleton)."""
    src = int(partition.labels[i])
    if dst == src:
        return
    if dst == partition.n_clusters:
        partition.n_clusters += 1
    partition.labels[i] = dst
    emptied = stats.sizes[src] == 1
    moved = stats.move(codes[i], src, dst)
    if emptied:
        _relabel(partition, moved, src)


def apply_merge(partition: Partition, stats: ClusterStats, a: int, b: int) -> None:
    """Merge cluster *b* into *a*."""
    partition.labels[partition.labels == b] = a
    moved = stats.merge(a, b)
    _relabel(partition, moved, b)


def apply_split(
    partition: Partition, stats: ClusterStats, codes: np.ndarray, k: int, rows: np.ndarray
) -> int:
    """Move *rows* (all currently in cluster *k*) into a new cluster."""
    counts_b = count_rows(codes[rows], stats.n_alleles)
    new = stats.split(k, counts_b, len(rows))
    partition.labels[rows] = new
    partition.n_clusters += 1
    return new
