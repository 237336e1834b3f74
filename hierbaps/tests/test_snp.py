"""Tests for SNP matrix construction and FASTA loading."""

import gzip

import numpy as np
import pytest

from hierbaps.errors import InputError
from hierbaps.snp import SNPMatrix, load_fasta, segregating_columns


def _write_fasta(path, records):
    path.write_text("".join(f">{sid}\n{seq}\n" for sid, seq in records))


class TestSNPMatrix:
    def test_from_sequences(self):
        m = SNPMatrix.from_sequences(["s1", "s2", "s3"], ["aac", "acc", "agc"])
        assert m.n_sequences == 3
        assert m.n_sites == 3
        assert m.alphabets == [("a",), ("a", "c", "g"), ("c",)]
        np.testing.assert_array_equal(m.positions, [1, 2, 3])
        assert m.symbols(2) == "agc"

    def test_variable_sites(self):
        m = SNPMatrix.from_sequences(["s1", "s2", "s3"], ["aac", "acc", "agc"])
        v = m.variable_sites()
        assert v.n_sites == 1
        np.testing.assert_array_equal(v.positions, [2])
        assert v.sequence_ids == ["s1", "s2", "s3"]

    def test_gap_is_not_an_allele_for_variability(self):
        m = SNPMatrix.from_sequences(["s1", "s2", "s3"], ["a-", "aa", "c-"])
        np.testing.assert_array_equal(m.variable_mask(), [True, False])

    def test_subset_recomputes_alphabets(self):
        m = SNPMatrix.from_sequences(["s1", "s2", "s3"], ["aac", "acc", "agc"])
        sub = m.subset([0, 1])
        assert sub.sequence_ids == ["s1", "s2"]
        assert sub.alphabets[1] == ("a", "c")
        assert sub.symbols(1) == "acc"

    def test_subset_keeps_row_order(self):
        m = SNPMatrix.from_sequences(["s1", "s2", "s3"], ["aa", "cc", "gg"])
        sub = m.subset([2, 0])
        assert sub.sequence_ids == ["s3", "s1"]
        assert sub.symbols(0) == "gg"

    def test_is_invariant(self):
        assert SNPMatrix.from_sequences(["a", "b"], ["acgt", "acgt"]).is_invariant
        assert not SNPMatrix.from_sequences(["a", "b"], ["acgt", "acga"]).is_invariant

    def test_arrays_read_only(self):
        m = SNPMatrix.from_sequences(["s1", "s2"], ["ac", "ag"])
        assert not m.codes.flags.writeable
        with pytest.raises(ValueError):
            m.codes[0, 0] = 1

    def test_zero_sites(self):
        m = SNPMatrix.from_sequences(["s1", "s2"], ["", ""])
        assert m.n_sites == 0
        assert m.is_invariant
        assert m.max_alphabet_size == 1

    def test_mismatched_lengths(self):
        with pytest.raises(InputError, match="s2"):
            SNPMatrix.from_sequences(["s1", "s2"], ["acgt", "acg"])

    def test_empty(self):
        with pytest.raises(InputError):
            SNPMatrix.from_sequences([], [])

    def test_duplicate_ids(self):
        with pytest.raises(InputError):
            SNPMatrix.from_sequences(["s1", "s1"], ["ac", "ag"])

    def test_input_error_is_value_error(self):
        with pytest.raises(ValueError):
            SNPMatrix.from_sequences(["s1"], ["ac", "ag"])


class TestSegregatingColumns:
    def test_multi_allelic_columns_kept(self):
        chars = np.frombuffer(b"aaaccccgaatt", dtype=np.uint8).reshape(4, 3)
        keep_all = segregating_columns(chars, keep_singletons=True)
        assert keep_all.all()

    def test_minor_allele_count(self):
        rows = [b"ac", b"ac", b"at", b"gt"]
        chars = np.vstack([np.frombuffer(r, dtype=np.uint8) for r in rows])
        # column 1: one 'g' against three 'a' -> singleton
        np.testing.assert_array_equal(
            segregating_columns(chars, keep_singletons=False), [False, True]
        )
        np.testing.assert_array_equal(
            segregating_columns(chars, keep_singletons=True), [True, True]
        )


class TestLoadFasta:
    RECORDS = [
        ("s1", "ACGTA"),
        ("s2", "ACGTC"),
        ("s3", "ATGTC"),
        ("s4", "ATGNC"),
    ]

    def test_drops_invariant_and_singleton_columns(self, tmp_path):
        path = tmp_path / "aln.fasta"
        _write_fasta(path, self.RECORDS)
        m = load_fasta(path)
        assert m.sequence_ids == ["s1", "s2", "s3", "s4"]
        np.testing.assert_array_equal(m.positions, [2])
        assert m.alphabets == [("c", "t")]

    def test_keep_singletons(self, tmp_path):
        path = tmp_path / "aln.fasta"
        _write_fasta(path, self.RECORDS)
        m = load_fasta(path, keep_singletons=True)
        np.testing.assert_array_equal(m.positions, [2, 5])

    def test_ambiguous_symbols_become_gaps(self, tmp_path):
        path = tmp_path / "aln.fasta"
        _write_fasta(
            path,
            [("s1", "AAR"), ("s2", "ACA"), ("s3", "CCA"), ("s4", "CAC")],
        )
        m = load_fasta(path, keep_singletons=True)
        np.testing.assert_array_equal(m.positions, [1, 2, 3])
        assert m.alphabets[2] == ("-", "a", "c")

    def test_gzipped(self, tmp_path):
        path = tmp_path / "aln.fasta.gz"
        with gzip.open(path, "wt") as fh:
            for sid, seq in self.RECORDS:
                fh.write(f">{sid}\n{seq}\n")
        m = load_fasta(path)
        assert m.n_sequences == 4

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.fasta"
        path.write_text("")
        with pytest.raises(InputError):
            load_fasta(path)

    def test_unequal_lengths(self, tmp_path):
        path = tmp_path / "bad.fasta"
        _write_fasta(path, [("s1", "ACGT"), ("s2", "ACG")])
        with pytest.raises(InputError):
            load_fasta(path)
