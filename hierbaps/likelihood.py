"""Dirichlet-multinomial partition likelihood.

For one cluster with n members and allele counts n_x at a site whose
alphabet has A symbols, each with symmetric concentration a, the log
marginal probability of the counts (allele frequencies integrated out) is

    lgamma(A a) - lgamma(n + A a) + sum_x [lgamma(n_x + a) - lgamma(a)]

Sites are treated as conditionally independent, so the score of a
partition is the sum over sites and clusters.

Single-sequence moves change one count per site in two clusters, and
Gamma(x + 1) = x Gamma(x) reduces their effect to a sum of logs. The delta
forms below are exact, not approximations.
"""

from __future__ import annotations

import logging

import numpy as np
from scipy.special import gammaln

from hierbaps.counts import ClusterStats
from hierbaps.snp import SNPMatrix

logger = logging.getLogger(__name__)

PRIOR_MODES = ("symmetric", "per_site")


class DirichletMultinomial:
    """Marginal likelihood of a partition under a symmetric Dirichlet prior.

    Args:
        alphas: (S,) per-site concentration of each allele.
        alphabet_sizes: (S,) number of symbols at each site.
    """

    def __init__(self, alphas: np.ndarray, alphabet_sizes: np.ndarray):
        self.alphas = np.asarray(alphas, dtype=np.float64)
        self.alphabet_sizes = np.asarray(alphabet_sizes, dtype=np.float64)
        if self.alphas.shape != self.alphabet_sizes.shape:
            raise ValueError("alphas and alphabet_sizes must have the same length")
        if np.any(self.alphas <= 0):
            raise ValueError("Dirichlet concentration must be positive")
        self.mass = self.alphas * self.alphabet_sizes
        self._sites = np.arange(len(self.alphas))
        self._lgamma_alpha = gammaln(self.alphas)
        self._lgamma_mass = gammaln(self.mass)
        # Gain of opening a new cluster with one sequence in it.
        self._singleton = float(np.sum(np.log(self.alphas) - np.log(self.mass)))

    @classmethod
    def for_matrix(
        cls, matrix: SNPMatrix, concentration: float = 1.0, prior: str = "symmetric"
    ) -> DirichletMultinomial:
        """Model for the sites of *matrix*.

        ``prior="symmetric"`` gives every allele the concentration
        *concentration*; ``"per_site"`` spreads it over the site's
        alphabet (each allele gets concentration / A).
        """
        if concentration <= 0:
            raise ValueError(f"concentration must be > 0, got {concentration}")
        sizes = matrix.alphabet_sizes.astype(np.float64)
        if prior == "symmetric":
            alphas = np.full(matrix.n_sites, float(concentration))
        elif prior == "per_site":
            alphas = concentration / sizes
        else:
            raise ValueError(f"prior must be one of {PRIOR_MODES}, got {prior!r}")
        return cls(alphas, sizes)

    @property
    def n_sites(self) -> int:
        return len(self.alphas)

    # ------------------------------------------------------------------
    # Full scores
    # ------------------------------------------------------------------

    def log_ml(self, counts: np.ndarray, sizes) -> np.ndarray:
        """Log marginal likelihood of count blocks.

        Args:
            counts: (..., S, A) allele counts.
            sizes: (...) number of sequences behind each block.

        Returns:
            (...) log marginal likelihoods summed over sites.
        """
        sizes = np.asarray(sizes, dtype=np.float64)
        alpha = self.alphas[:, None]
        allele_terms = gammaln(counts + alpha) - self._lgamma_alpha[:, None]
        per_cluster = allele_terms.sum(axis=(-2, -1))
        size_terms = self._lgamma_mass - gammaln(sizes[..., None] + self.mass)
        return per_cluster + size_terms.sum(axis=-1)

    def cluster_scores(self, stats: ClusterStats) -> np.ndarray:
        """(K,) contribution of each cluster to the total score."""
        return self.log_ml(stats.counts, stats.sizes)

    def score(self, stats: ClusterStats) -> float:
        """Total log marginal likelihood of the partition behind *stats*."""
        return float(self.cluster_scores(stats).sum())

    # ------------------------------------------------------------------
    # Deltas
    # ------------------------------------------------------------------

    def add_deltas(self, stats: ClusterStats, codes_row: np.ndarray) -> np.ndarray:
        """Score gain of adding one sequence to each cluster.

        Returns:
            (K + 1,) gains; the last entry is for a new, empty cluster.
        """
        k = stats.n_clusters
        gains = np.empty(k + 1)
        matched = stats.counts[:, self._sites, codes_row]  # (K, S)
        gains[:k] = (
            np.log(matched + self.alphas).sum(axis=1)
            - np.log(stats.sizes[:, None] + self.mass).sum(axis=1)
        )
        gains[k] = self._singleton
        return gains

    def remove_delta(self, stats: ClusterStats, codes_row: np.ndarray, src: int) -> float:
        """Score change of taking one sequence (a member of *src*) out of it."""
        matched = stats.counts[src, self._sites, codes_row]
        size = stats.sizes[src]
        return float(
            np.sum(np.log(size - 1 + self.mass))
            - np.sum(np.log(matched - 1 + self.alphas))
        )

    def move_delta(
        self, stats: ClusterStats, codes_row: np.ndarray, src: int, dst: int
    ) -> float:
        """Exact score change of moving one sequence from *src* to *dst*.

        ``dst == K`` means a new singleton cluster. Only the two affected
        clusters are evaluated.
        """
        if src == dst:
            return 0.0
        delta = self.remove_delta(stats, codes_row, src)
        if dst == stats.n_clusters:
            return delta + self._singleton
        matched = stats.counts[dst, self._sites, codes_row]
        size = stats.sizes[dst]
        return delta + float(
            np.sum(np.log(matched + self.alphas)) - np.sum(np.log(size + self.mass))
        )

    def merge_delta(self, stats: ClusterStats, a: int, b: int) -> float:
        """Score change of merging clusters *a* and *b*."""
        counts, sizes = stats.counts, stats.sizes
        merged = self.log_ml(counts[a] + counts[b], sizes[a] + sizes[b])
        parts = self.log_ml(counts[[a, b]], sizes[[a, b]])
        return float(merged - parts.sum())

    def pairwise_merge_deltas(self, stats: ClusterStats) -> np.ndarray:
        """(K, K) merge deltas; only the strict upper triangle is filled.

        Other entries are -inf.
        """
        k = stats.n_clusters
        deltas = np.full((k, k), -np.inf)
        if k < 2:
            return deltas
        counts, sizes = stats.counts, stats.sizes
        own = self.log_ml(counts, sizes)
        for a in range(k - 1):
            merged = self.log_ml(counts[a] + counts[a + 1 :], sizes[a] + sizes[a + 1 :])
            deltas[a, a + 1 :] = merged - own[a] - own[a + 1 :]
        return deltas

    def split_delta(
        self, stats: ClusterStats, k: int, counts_b: np.ndarray, size_b: int
    ) -> float:
        """Score change of carving *counts_b* out of cluster *k*."""
        counts_k = stats.counts[k]
        size_k = stats.sizes[k]
        before = self.log_ml(counts_k, size_k)
        after = self.log_ml(counts_k - counts_b, size_k - size_b) + self.log_ml(
            counts_b, size_b
        )
        return float(after - before)
