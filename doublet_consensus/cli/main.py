"""Command-line interface for doublet-consensus.

Provides CLI commands for running consensus doublet calling, validating run
configurations and writing labels back into AnnData files.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml

from doublet_consensus import __version__


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("doublet_consensus")


@click.group()
@click.version_option(version=__version__, prog_name="doublet-consensus")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """doublet-consensus: Consensus doublet calling for single-cell data.

    Combines several doublet detectors with cell-type annotation confidence
    and cluster-level amplification into one label per cell.

    Examples:

        # Check a run configuration
        doublet-consensus validate --config consensus.yaml

        # Run all samples of a configuration
        doublet-consensus run --config consensus.yaml --out out/consensus/

        # Write labels into an AnnData file
        doublet-consensus annotate --input sample.h5ad --labels out/consensus/cell_labels.csv --out labeled.h5ad
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


def _load_config(config: str):
    from doublet_consensus.core.consensus import ConsensusConfig

    try:
        return ConsensusConfig.from_yaml(Path(config))
    except (ValueError, yaml.YAMLError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Consensus configuration file (YAML)")
@click.option("--out", "-o", "output_path", type=click.Path(),
              help="Output directory (overrides output_dir in the config)")
@click.option("--n-workers", type=int, help="Parallel workers across samples")
@click.option("--log-file", type=click.Path(), help="Write a timestamped run log")
@click.pass_context
def run(
    ctx: click.Context,
    config: str,
    output_path: Optional[str],
    n_workers: Optional[int],
    log_file: Optional[str],
) -> None:
    """Run consensus doublet calling on every sample of a configuration.

    Writes cell_labels.csv, cluster_summary.csv, consensus_result.json,
    consensus_report.md and provenance.json to the output directory.
    """
    logger = ctx.obj["logger"]

    from doublet_consensus.core.consensus import ConsensusEngine, ConsensusError, export_all
    from doublet_consensus.io import (
        append_run_record,
        build_run_record,
        close_run_log,
        open_run_log,
    )

    cfg = _load_config(config)
    if n_workers is not None:
        cfg.n_workers = n_workers

    out_dir = Path(output_path or cfg.output_dir or Path(config).parent / "consensus")

    run_logger = logger
    if log_file:
        run_logger, actual_log_path = open_run_log(log_file, cfg, console=ctx.obj["verbose"])
        click.echo(f"Logging to {actual_log_path}")

    logger.info(f"Loading consensus config: {config}")
    logger.info(f"Output: {out_dir}")

    try:
        engine = ConsensusEngine(cfg, logger=run_logger)
        result = engine.execute_multi()
    except (ConsensusError, OSError, ValueError) as e:
        run_logger.error("Run failed: %s", e)
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        if log_file:
            close_run_log(run_logger)

    outputs = export_all(result, out_dir, config_path=Path(config))
    append_run_record(out_dir, build_run_record(config, cfg, result, outputs))

    for sample_id in result.samples_processed:
        r = result.results[sample_id]
        counts = r.label_counts()
        click.echo(
            f"{sample_id}: {counts['doublet']} doublet, {counts['singlet']} singlet, "
            f"{counts['unclassified']} unclassified "
            f"({r.clusters.n_doublet_clusters} doublet clusters)"
        )
    click.echo(f"Outputs written to {out_dir}")


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Consensus configuration file (YAML)")
@click.pass_context
def validate(ctx: click.Context, config: str) -> None:
    """Validate thresholds, modalities and source paths of a configuration."""
    logger = ctx.obj["logger"]
    logger.info(f"Validating consensus config: {config}")

    cfg = _load_config(config)
    valid, errors = cfg.validate(check_paths=True)
    if not valid:
        for error in errors:
            click.echo(f"Error: {error}", err=True)
        sys.exit(1)

    t = cfg.thresholds
    click.echo(
        f"Thresholds: candidate >= {t.candidate_threshold}, "
        f"fold change >= {t.fold_change_threshold}, "
        f"final vote >= {t.final_vote_threshold}"
    )
    for sample_id, sample in cfg.samples.items():
        click.echo(f"  {sample_id}: detectors {', '.join(sample.detectors)}")
    click.echo(f"Configuration valid ({len(cfg.samples)} samples)")


@cli.command()
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Also list modalities declared in this configuration")
def modalities(config: Optional[str]) -> None:
    """List registered cell identifier conventions."""
    from doublet_consensus.config import get_modality_config, list_available_modalities

    if config:
        _load_config(config).register_modalities()

    for name in list_available_modalities():
        modality = get_modality_config(name)
        aliases = f" (aliases: {', '.join(modality.aliases)})" if modality.aliases else ""
        click.echo(f"{name}{aliases}")
        if modality.description:
            click.echo(f"    {modality.description}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad)")
@click.option("--labels", "-l", "labels_path", required=True, type=click.Path(exists=True),
              help="Per-cell labels (cell_labels.csv from 'run')")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output AnnData file (.h5ad)")
@click.option("--prefix", default="doublet_", help="Prefix for the new obs columns")
@click.option("--modality", help="Identifier convention of the AnnData obs_names")
@click.option("--sample", "sample_id", help="Only use labels of this sample")
@click.pass_context
def annotate(
    ctx: click.Context,
    input_path: str,
    labels_path: str,
    output_path: str,
    prefix: str,
    modality: Optional[str],
    sample_id: Optional[str],
) -> None:
    """Write consensus labels into the obs table of an AnnData file."""
    logger = ctx.obj["logger"]
    logger.info(f"Annotating {input_path} with {labels_path}")

    import pandas as pd

    from doublet_consensus.io import write_labels_to_h5ad

    labels = pd.read_csv(labels_path, dtype={"cell_id": str, "sample_id": str})
    if sample_id is not None:
        if "sample_id" not in labels.columns:
            click.echo("Error: labels table has no sample_id column", err=True)
            sys.exit(1)
        labels = labels[labels["sample_id"] == sample_id]
    elif "sample_id" in labels.columns and labels["sample_id"].nunique() > 1:
        samples = ", ".join(sorted(labels["sample_id"].dropna().unique()))
        click.echo(
            f"Error: labels table holds several samples ({samples}); choose one with --sample",
            err=True,
        )
        sys.exit(1)
    if labels.empty:
        click.echo("Error: no labels to write", err=True)
        sys.exit(1)

    try:
        path = write_labels_to_h5ad(
            input_path, labels, output_path, prefix=prefix, modality=modality
        )
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Wrote {path}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
