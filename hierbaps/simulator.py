"""Synthetic alignment simulator for hierbaps benchmarking.

Generates aligned core-genome sequences with nested population structure
and known ground truth:
- a random ancestral sequence,
- populations diverged from the ancestor,
- sub-populations diverged from each population,
- individuals with a little private variation and optional missing data.

All randomness flows through numpy's Generator API for full reproducibility.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from hierbaps.types import SimulationGroundTruth
from hierbaps.utils import FastaRecord

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BASES = np.array(list("ACGT"))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class SimulationConfig:
    """Configuration for synthetic alignment generation.

    Attributes:
        n_populations: Number of top-level populations.
        n_subpopulations: Sub-populations inside each population.
        sequences_per_subpopulation: Sequences sampled per sub-population.
        alignment_length: Number of alignment columns.
        population_divergence: Per-site mutation probability between the
            ancestor and each population.
        subpopulation_divergence: Per-site mutation probability between a
            population and each of its sub-populations.
        individual_divergence: Per-site mutation probability for each
            sampled sequence.
        missing_rate: Per-site probability of an ``N`` (missing) call.
        random_seed: Seed for the numpy random number generator.
    """

    n_populations: int = 3
    n_subpopulations: int = 2
    sequences_per_subpopulation: int = 10
    alignment_length: int = 2_000
    population_divergence: float = 0.05
    subpopulation_divergence: float = 0.01
    individual_divergence: float = 0.0005
    missing_rate: float = 0.0
    random_seed: int = 42


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _mutate(template: np.ndarray, rate: float, rng: np.random.Generator) -> np.ndarray:
    """Copy *template* (base indices 0..3), mutating each site with *rate*.

    Mutations always change the base (uniform among the three
    alternatives), matching the usual SNP model.
    """
    seq = template.copy()
    mask = rng.random(len(seq)) < rate
    n_mutations = int(mask.sum())
    if n_mutations:
        offsets = rng.integers(1, 4, size=n_mutations)
        seq[mask] = (seq[mask] + offsets) % 4
    return seq


def _to_string(indices: np.ndarray, missing: np.ndarray | None = None) -> str:
    chars = _BASES[indices].copy()
    if missing is not None:
        chars[missing] = "N"
    return "".join(chars)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def simulate_alignment(
    config: SimulationConfig | None = None,
) -> tuple[list[FastaRecord], SimulationGroundTruth]:
    """Simulate an alignment with two levels of nested population structure.

    Args:
        config: Simulation parameters. Uses defaults when omitted.

    Returns:
        (records, truth) where records are aligned FASTA records ordered by
        population, then sub-population, and truth holds the labels.
    """
    cfg = config or SimulationConfig()
    if cfg.n_populations < 1 or cfg.n_subpopulations < 1:
        raise ValueError("Need at least one population and one sub-population")
    if cfg.sequences_per_subpopulation < 1:
        raise ValueError("sequences_per_subpopulation must be >= 1")
    rng = np.random.default_rng(cfg.random_seed)

    ancestor = rng.integers(0, 4, size=cfg.alignment_length)

    records: list[FastaRecord] = []
    population: list[int] = []
    subpopulation: list[int] = []

    sub_idx = 0
    for p in range(cfg.n_populations):
        pop_seq = _mutate(ancestor, cfg.population_divergence, rng)
        for _ in range(cfg.n_subpopulations):
            sub_seq = _mutate(pop_seq, cfg.subpopulation_divergence, rng)
            for _ in range(cfg.sequences_per_subpopulation):
                ind_seq = _mutate(sub_seq, cfg.individual_divergence, rng)
                missing = None
                if cfg.missing_rate > 0:
                    missing = rng.random(cfg.alignment_length) < cfg.missing_rate
                seq_id = f"iso_{len(records) + 1:04d}"
                records.append(FastaRecord(seq_id=seq_id, sequence=_to_string(ind_seq, missing)))
                population.append(p)
                subpopulation.append(sub_idx)
            sub_idx += 1

    truth = SimulationGroundTruth(
        sequence_ids=[r.seq_id for r in records],
        population=np.array(population),
        subpopulation=np.array(subpopulation),
        n_sites=cfg.alignment_length,
    )
    return records, truth
