"""Tests for FASTA I/O and partition comparison."""

import numpy as np
import pytest

from hierbaps.utils import FastaRecord, adjusted_rand_index, parse_fasta, write_fasta


class TestFasta:
    def test_multiline_and_headers(self, tmp_path):
        path = tmp_path / "x.fasta"
        path.write_text(">seq1 sample one\nACGT\nAC\n\n>seq2\nTTTTTT\n")
        records = list(parse_fasta(path))
        assert [r.seq_id for r in records] == ["seq1", "seq2"]
        assert records[0].sequence == "ACGTAC"
        assert len(records[1]) == 6

    def test_write_wraps_lines(self, tmp_path):
        path = tmp_path / "out.fasta"
        write_fasta([FastaRecord("s", "A" * 10)], path, width=4)
        assert path.read_text() == ">s\nAAAA\nAAAA\nAA\n"

    def test_gzip_round_trip(self, tmp_path):
        path = tmp_path / "out.fasta.gz"
        records = [FastaRecord("a", "ACGT"), FastaRecord("b", "ACGA")]
        write_fasta(records, path)
        assert list(parse_fasta(path)) == records


class TestAdjustedRandIndex:
    def test_identical_up_to_relabelling(self):
        assert adjusted_rand_index([0, 0, 1, 1, 2], [5, 5, 3, 3, 9]) == 1.0

    def test_known_value(self):
        # Standard worked example: ARI = 0.24242...
        a = [0, 0, 0, 1, 1, 1]
        b = [0, 0, 1, 1, 2, 2]
        assert adjusted_rand_index(a, b) == pytest.approx(0.242424, abs=1e-5)

    def test_trivial(self):
        assert adjusted_rand_index([0, 0, 0], [1, 1, 1]) == 1.0

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            adjusted_rand_index([0, 1], [0, 1, 1])

    def test_symmetric(self):
        rng = np.random.default_rng(0)
        a = rng.integers(0, 3, size=30)
        b = rng.integers(0, 4, size=30)
        assert adjusted_rand_index(a, b) == pytest.approx(adjusted_rand_index(b, a))
