"""Tests for the command-line interface."""

import json

from click.testing import CliRunner

from hierbaps.aggregate import read_partition_csv
from hierbaps.cli import cli
from hierbaps.utils import parse_fasta


def _simulate(runner, out):
    return runner.invoke(
        cli,
        ["simulate", "--per-subpopulation", "5", "--length", "1000", "--seed", "3", "-o", str(out)],
    )


class TestSimulateCommand:
    def test_writes_alignment_and_truth(self, tmp_path):
        runner = CliRunner()
        result = _simulate(runner, tmp_path / "sim")
        assert result.exit_code == 0, result.output
        records = list(parse_fasta(tmp_path / "sim" / "alignment.fasta"))
        assert len(records) == 30
        truth = json.loads((tmp_path / "sim" / "ground_truth.json").read_text())
        assert len(truth["population"]) == 30


class TestRunCommand:
    def test_run_on_simulated_alignment(self, tmp_path):
        runner = CliRunner()
        assert _simulate(runner, tmp_path / "sim").exit_code == 0
        result = runner.invoke(
            cli,
            [
                "-q", "run",
                "--fasta", str(tmp_path / "sim" / "alignment.fasta"),
                "-o", str(tmp_path / "out"),
                "--n-restarts", "2",
                "--seed", "1",
            ],
        )
        assert result.exit_code == 0, result.output
        assert "level 1: 3 clusters" in result.output
        table = read_partition_csv(tmp_path / "out" / "partition.csv")
        assert len(table) == 30
        assert table.n_levels == 2
        diag = json.loads((tmp_path / "out" / "diagnostics.json").read_text())
        assert [lv["level"] for lv in diag["levels"]] == [1, 2]

    def test_bad_option_value(self, tmp_path):
        runner = CliRunner()
        assert _simulate(runner, tmp_path / "sim").exit_code == 0
        result = runner.invoke(
            cli,
            [
                "run",
                "--fasta", str(tmp_path / "sim" / "alignment.fasta"),
                "-o", str(tmp_path / "out"),
                "--max-depth", "0",
            ],
        )
        assert result.exit_code != 0
        assert "max_depth" in result.output

    def test_malformed_fasta(self, tmp_path):
        bad = tmp_path / "bad.fasta"
        bad.write_text(">a\nACGT\n>b\nACG\n")
        result = CliRunner().invoke(cli, ["run", "--fasta", str(bad), "-o", str(tmp_path / "out")])
        assert result.exit_code != 0
        assert "Error" in result.output


class TestExtractCommand:
    def test_extract_snp_columns(self, tmp_path):
        src = tmp_path / "aln.fasta"
        src.write_text(">s1\nACGTA\n>s2\nACGTC\n>s3\nATGTC\n>s4\nATGAC\n")
        out = tmp_path / "snps.fasta"
        result = CliRunner().invoke(cli, ["extract", "--fasta", str(src), "-o", str(out)])
        assert result.exit_code == 0, result.output
        records = list(parse_fasta(out))
        assert [r.sequence for r in records] == ["c", "c", "t", "t"]
        positions = json.loads((tmp_path / "snps.fasta.positions.json").read_text())
        assert positions == [2]
