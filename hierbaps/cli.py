"""Command-line interface for hierbaps.

Provides commands for:
- run: Hierarchical clustering of a FASTA alignment
- extract: Reduce an alignment to its SNP columns
- simulate: Generate a synthetic alignment with nested structure
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path

import click

from hierbaps import __version__

logger = logging.getLogger("hierbaps")


def _setup_logging(verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.option("-q", "--quiet", is_flag=True, help="Only log warnings and errors.")
def cli(verbose: bool, quiet: bool) -> None:
    """hierbaps: Hierarchical Bayesian population-structure clustering."""
    _setup_logging(verbose, quiet)


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--fasta", required=True, type=click.Path(exists=True), help="Aligned FASTA (plain or .gz).")
@click.option("-o", "--output-dir", required=True, type=click.Path(), help="Output directory.")
@click.option("--max-depth", default=2, help="Number of hierarchy levels.")
@click.option("--n-pops", "max_clusters", default=20, help="Upper bound on clusters per search.")
@click.option("--min-cluster-size", default=5, help="Smallest cluster that is re-partitioned.")
@click.option("--n-restarts", default=10, help="Independent restarts per search.")
@click.option("--alpha", default=1.0, help="Dirichlet concentration per allele.")
@click.option("--prior", type=click.Choice(["symmetric", "per_site"]), default="symmetric", help="How the concentration is spread over alleles.")
@click.option("--convergence", type=click.Choice(["until_local_optimum", "fixed_rounds"]), default="until_local_optimum", help="Stop at a local optimum or after --max-rounds.")
@click.option("--max-rounds", default=5, help="Round limit for fixed_rounds.")
@click.option("--n-jobs", default=1, help="Worker processes for restarts.")
@click.option("--time-budget", type=float, default=None, help="Wall-clock limit in seconds.")
@click.option("--max-branch-cells", type=int, default=None, help="Largest sequences x sites block a branch may search.")
@click.option("--keep-singletons", is_flag=True, help="Keep SNP columns whose variation is a single sequence.")
@click.option("--seed", type=int, default=None, help="Random seed.")
def run(
    fasta: str,
    output_dir: str,
    max_depth: int,
    max_clusters: int,
    min_cluster_size: int,
    n_restarts: int,
    alpha: float,
    prior: str,
    convergence: str,
    max_rounds: int,
    n_jobs: int,
    time_budget: float | None,
    max_branch_cells: int | None,
    keep_singletons: bool,
    seed: int | None,
) -> None:
    """Cluster an alignment and write partition.csv and diagnostics.json."""
    from hierbaps.hierarchy import HierarchicalClustering, HierarchyConfig
    from hierbaps.snp import load_fasta

    config = HierarchyConfig(
        max_depth=max_depth,
        max_clusters_per_level=max_clusters,
        min_cluster_size=min_cluster_size,
        num_restarts=n_restarts,
        dirichlet_concentration=alpha,
        prior=prior,
        random_seed=seed,
        convergence_mode=convergence,
        max_rounds=max_rounds,
        n_jobs=n_jobs,
        time_budget=time_budget,
        max_branch_cells=max_branch_cells,
    )
    try:
        config.validate()
        matrix = load_fasta(Path(fasta), keep_singletons=keep_singletons)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    logger.info("Loaded %d sequences x %d SNP sites from %s", matrix.n_sequences, matrix.n_sites, fasta)
    t0 = time.perf_counter()
    result = HierarchicalClustering(config).fit(matrix)
    elapsed = time.perf_counter() - t0

    out = Path(output_dir)
    result.save(out)

    click.echo(f"Clustered {matrix.n_sequences} sequences on {matrix.n_sites} SNP sites in {elapsed:.2f}s")
    for lv in result.diagnostics.levels:
        click.echo(f"  level {lv.level}: {lv.n_clusters} clusters, log ML={lv.log_ml:.2f}")
    if result.diagnostics.early_terminated:
        click.echo("  stopped early: time budget reached")
    for note in result.diagnostics.notes:
        click.echo(f"  note [{note.category}] level {note.level}: {note.message}")
    click.echo(f"Results written to {out}/")


# ---------------------------------------------------------------------------
# extract
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--fasta", required=True, type=click.Path(exists=True), help="Aligned FASTA (plain or .gz).")
@click.option("-o", "--output", required=True, type=click.Path(), help="Output FASTA of SNP columns.")
@click.option("--keep-singletons", is_flag=True, help="Keep SNP columns whose variation is a single sequence.")
def extract(fasta: str, output: str, keep_singletons: bool) -> None:
    """Reduce an alignment to its SNP columns."""
    from hierbaps.errors import InputError
    from hierbaps.snp import load_fasta
    from hierbaps.utils import write_fasta

    try:
        matrix = load_fasta(Path(fasta), keep_singletons=keep_singletons)
    except InputError as exc:
        raise click.ClickException(str(exc)) from exc

    out = Path(output)
    write_fasta(matrix.to_records(), out)
    positions_path = out.with_name(out.name + ".positions.json")
    positions_path.write_text(json.dumps(matrix.positions.tolist()))
    click.echo(f"Wrote {matrix.n_sequences} sequences x {matrix.n_sites} SNP sites -> {out}")


# ---------------------------------------------------------------------------
# simulate
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--n-populations", default=3, help="Number of top-level populations.")
@click.option("--n-subpopulations", default=2, help="Sub-populations per population.")
@click.option("--per-subpopulation", default=10, help="Sequences per sub-population.")
@click.option("--length", default=2_000, help="Alignment length (bp).")
@click.option("--population-divergence", default=0.05, help="Per-site divergence of populations.")
@click.option("--subpopulation-divergence", default=0.01, help="Per-site divergence of sub-populations.")
@click.option("--individual-divergence", default=0.0005, help="Per-site private variation.")
@click.option("--missing-rate", default=0.0, help="Fraction of N calls.")
@click.option("--seed", default=42, help="Random seed.")
@click.option("-o", "--output-dir", required=True, type=click.Path(), help="Output directory.")
def simulate(
    n_populations: int,
    n_subpopulations: int,
    per_subpopulation: int,
    length: int,
    population_divergence: float,
    subpopulation_divergence: float,
    individual_divergence: float,
    missing_rate: float,
    seed: int,
    output_dir: str,
) -> None:
    """Generate a synthetic alignment with known nested structure."""
    from hierbaps.simulator import SimulationConfig, simulate_alignment
    from hierbaps.utils import write_fasta

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    config = SimulationConfig(
        n_populations=n_populations,
        n_subpopulations=n_subpopulations,
        sequences_per_subpopulation=per_subpopulation,
        alignment_length=length,
        population_divergence=population_divergence,
        subpopulation_divergence=subpopulation_divergence,
        individual_divergence=individual_divergence,
        missing_rate=missing_rate,
        random_seed=seed,
    )

    logger.info(
        "Simulating alignment: %d populations x %d sub-populations x %d sequences",
        n_populations, n_subpopulations, per_subpopulation,
    )
    records, truth = simulate_alignment(config)

    write_fasta(records, out / "alignment.fasta")
    truth.save(out / "ground_truth.json")

    click.echo(f"Simulated {len(records)} sequences of {length} bp -> {out}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
