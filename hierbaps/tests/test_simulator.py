"""Tests for the nested-structure alignment simulator."""

import json

import numpy as np
import pytest

from hierbaps.simulator import SimulationConfig, simulate_alignment
from hierbaps.types import SimulationGroundTruth
from hierbaps.utils import FastaRecord


class TestSimulationConfig:
    def test_default_config(self):
        cfg = SimulationConfig()
        assert cfg.n_populations == 3
        assert cfg.n_subpopulations == 2
        assert cfg.sequences_per_subpopulation == 10
        assert cfg.alignment_length == 2_000
        assert cfg.random_seed == 42


class TestSimulateAlignment:
    def test_basic_simulation(self):
        cfg = SimulationConfig(n_populations=2, n_subpopulations=3, sequences_per_subpopulation=4)
        records, truth = simulate_alignment(cfg)
        assert len(records) == 24
        assert all(isinstance(r, FastaRecord) for r in records)
        assert all(len(r) == cfg.alignment_length for r in records)
        assert isinstance(truth, SimulationGroundTruth)

    def test_labels(self):
        cfg = SimulationConfig(n_populations=2, n_subpopulations=2, sequences_per_subpopulation=3)
        records, truth = simulate_alignment(cfg)
        np.testing.assert_array_equal(truth.population, [0] * 6 + [1] * 6)
        np.testing.assert_array_equal(truth.subpopulation, [0] * 3 + [1] * 3 + [2] * 3 + [3] * 3)
        assert truth.sequence_ids == [r.seq_id for r in records]
        assert records[0].seq_id == "iso_0001"

    def test_deterministic_output(self):
        cfg = SimulationConfig(sequences_per_subpopulation=3, random_seed=7)
        a, _ = simulate_alignment(cfg)
        b, _ = simulate_alignment(cfg)
        assert [r.sequence for r in a] == [r.sequence for r in b]

    def test_different_seeds_differ(self):
        a, _ = simulate_alignment(SimulationConfig(sequences_per_subpopulation=2, random_seed=1))
        b, _ = simulate_alignment(SimulationConfig(sequences_per_subpopulation=2, random_seed=2))
        assert a[0].sequence != b[0].sequence

    def test_structure_in_distances(self):
        cfg = SimulationConfig(sequences_per_subpopulation=4)
        records, truth = simulate_alignment(cfg)
        seqs = np.array([list(r.sequence) for r in records])
        within_sub = (seqs[0] != seqs[1]).mean()
        within_pop = (seqs[0] != seqs[4]).mean()
        between_pop = (seqs[0] != seqs[8]).mean()
        assert truth.subpopulation[4] != truth.subpopulation[0]
        assert truth.population[8] != truth.population[0]
        assert within_sub < within_pop < between_pop

    def test_missing_data(self):
        cfg = SimulationConfig(sequences_per_subpopulation=2, missing_rate=0.1)
        records, _ = simulate_alignment(cfg)
        n_missing = sum(r.sequence.count("N") for r in records)
        assert n_missing > 0

    def test_invalid(self):
        with pytest.raises(ValueError):
            simulate_alignment(SimulationConfig(n_populations=0))

    def test_ground_truth_save(self, tmp_path):
        _, truth = simulate_alignment(SimulationConfig(sequences_per_subpopulation=2))
        truth.save(tmp_path / "truth.json")
        data = json.loads((tmp_path / "truth.json").read_text())
        assert data["population"] == truth.population.tolist()
        assert truth.level(2) is truth.subpopulation
        with pytest.raises(ValueError):
            truth.level(3)
