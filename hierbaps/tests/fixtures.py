"""Synthetic SNP matrices for hierbaps tests."""

from __future__ import annotations

import numpy as np

from hierbaps.simulator import SimulationConfig, simulate_alignment
from hierbaps.snp import SNPMatrix, snp_matrix_from_records
from hierbaps.types import SimulationGroundTruth


def random_snp_matrix(
    n_sequences: int = 12,
    n_sites: int = 15,
    symbols: str = "acg-",
    seed: int = 0,
) -> SNPMatrix:
    """Unstructured matrix with random symbols at every site."""
    rng = np.random.default_rng(seed)
    chars = rng.choice(list(symbols), size=(n_sequences, n_sites))
    ids = [f"seq{i}" for i in range(n_sequences)]
    return SNPMatrix.from_sequences(ids, ["".join(row) for row in chars])


def single_site_matrix(n_per_symbol: int = 4) -> SNPMatrix:
    """One variable site, two symbols in equal numbers, interleaved."""
    symbols = ["a", "c"] * n_per_symbol
    ids = [f"iso{i}" for i in range(len(symbols))]
    return SNPMatrix.from_sequences(ids, symbols)


def invariant_matrix(n_sequences: int = 6, length: int = 10) -> SNPMatrix:
    ids = [f"iso{i}" for i in range(n_sequences)]
    return SNPMatrix.from_sequences(ids, ["acgt" * (length // 4) + "a" * (length % 4)] * n_sequences)


def structured_matrix(
    n_populations: int = 3,
    n_subpopulations: int = 2,
    per_subpopulation: int = 8,
    alignment_length: int = 2_000,
    seed: int = 42,
) -> tuple[SNPMatrix, SimulationGroundTruth]:
    """Simulated SNP matrix with two levels of planted structure."""
    cfg = SimulationConfig(
        n_populations=n_populations,
        n_subpopulations=n_subpopulations,
        sequences_per_subpopulation=per_subpopulation,
        alignment_length=alignment_length,
        population_divergence=0.05,
        subpopulation_divergence=0.01,
        individual_divergence=0.0005,
        random_seed=seed,
    )
    records, truth = simulate_alignment(cfg)
    return snp_matrix_from_records(records, keep_singletons=True), truth
