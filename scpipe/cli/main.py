"""Command-line interface for scpipe.

Provides commands for running the analysis pipeline and writing a
default configuration file.
"""

import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional

import click
import pandas as pd

from .. import __version__
from ..errors import ScpipeError


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("scpipe")


@click.group()
@click.version_option(version=__version__, prog_name="scpipe")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """scpipe: single-cell RNA-seq analysis pipeline.

    Runs QC, normalization, variable feature selection, scaling, PCA,
    SNN graph construction, Louvain clustering, UMAP/t-SNE projection
    and marker gene testing.

    Examples:

        # Write the default configuration
        scpipe config --out scpipe.yaml

        # Run the full pipeline
        scpipe run --input counts.h5ad --out results/ --config scpipe.yaml
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Count matrix (.h5ad, or CSV with cells as rows)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Pipeline configuration file (YAML)")
@click.option("--genes-as-rows", is_flag=True, help="CSV rows are genes, columns are cells")
@click.option("--resolution", type=float, help="Override clustering resolution")
@click.option("--seed", type=int, help="Override clustering random seed")
@click.option("--end-stage", help="Stop after this stage")
@click.option("--write-h5ad", is_flag=True, help="Also write the final store as .h5ad")
@click.pass_context
def run(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    genes_as_rows: bool,
    resolution: Optional[float],
    seed: Optional[int],
    end_stage: Optional[str],
    write_h5ad: bool,
) -> None:
    """Run the analysis pipeline on a count matrix.

    Writes cell metadata, the variable feature set, the PCA embedding,
    2D coordinates, marker tables, the resolved configuration and a run
    manifest to the output directory.
    """
    # Import here to avoid slow startup
    from ..io import ensure_output_dir, load_store, log_json, log_yaml
    from ..pipeline import AnalysisPipeline, PipelineConfig, PipelineLogger

    logger = ctx.obj["logger"]
    out_dir = ensure_output_dir(output_path)
    pipeline_logger = None

    try:
        try:
            cfg = PipelineConfig.from_yaml(config) if config else PipelineConfig.default()
            if resolution is not None:
                cfg.clustering = replace(cfg.clustering, resolution=resolution)
            if seed is not None:
                cfg.clustering = replace(cfg.clustering, random_seed=seed)

            pipeline_logger = PipelineLogger(
                out_dir / "logs",
                log_level="DEBUG" if ctx.obj["debug"] else "INFO",
                console=ctx.obj["verbose"] or ctx.obj["debug"],
            )
            pipeline_logger.setup()

            store = load_store(input_path, genes_as_rows=genes_as_rows)
            logger.info("Input: %s (%d cells x %d genes)", input_path, store.n_obs, store.n_vars)
            result = AnalysisPipeline(cfg, pipeline_logger).run(store, end_stage=end_stage)
        except (ScpipeError, ValueError) as e:
            if pipeline_logger is not None:
                pipeline_logger.log_error(str(e))
            raise click.ClickException(f"{type(e).__name__}: {e}") from e

        summary = _write_outputs(result, cfg, out_dir, write_h5ad)
        summary["input"] = str(input_path)
        log_yaml(out_dir / "manifest.yaml", summary)
        log_json(out_dir / "runs.jsonl", summary)
    finally:
        if pipeline_logger is not None:
            pipeline_logger.close()

    click.echo(
        f"Pipeline complete: {summary['n_cells']} cells, "
        f"{summary['n_clusters']} clusters, {summary['n_markers']} markers"
    )
    click.echo(f"Output saved to: {out_dir}")


def _write_outputs(result, cfg, out_dir: Path, write_h5ad: bool) -> dict:
    """Write the result tables for one run and return its summary."""
    from ..io import write_dataframe

    cfg.to_yaml(out_dir / "config.yaml")
    write_dataframe(result.cell_metadata, out_dir / "cell_metadata.csv", index=True)
    write_dataframe(
        pd.DataFrame({"gene": list(result.features), "rank": range(1, len(result.features) + 1)}),
        out_dir / "variable_features.csv",
    )
    if result.embedding is not None:
        pcs = pd.DataFrame(
            result.embedding,
            index=result.store.obs_names,
            columns=[f"PC_{i + 1}" for i in range(result.embedding.shape[1])],
        )
        write_dataframe(pcs, out_dir / "pca_embedding.csv", index=True)
    if result.projection is not None:
        coords = pd.DataFrame(
            result.projection.coordinates,
            index=result.store.obs_names,
            columns=[f"{result.projection.key[2:].upper()}_{i + 1}" for i in range(2)],
        )
        write_dataframe(coords, out_dir / f"{result.projection.key[2:]}.csv", index=True)
    if "markers" in result.completed_stages:
        write_dataframe(result.markers, out_dir / "markers.csv")
    if result.jackstraw is not None:
        write_dataframe(result.jackstraw.pc_scores, out_dir / "jackstraw_scores.csv")
    if write_h5ad and result.store is not None:
        adata = result.store.to_anndata()
        # run diagnostics are written to manifest.yaml
        adata.uns.clear()
        adata.write_h5ad(out_dir / "result.h5ad")

    return result.summary()


@cli.command()
@click.option("--out", "-o", "output_path", type=click.Path(),
              help="Write to this file instead of stdout")
def config(output_path: Optional[str]) -> None:
    """Print (or write) the default pipeline configuration as YAML."""
    from ..pipeline import PipelineConfig

    text = PipelineConfig.default().to_yaml(output_path)
    if output_path:
        click.echo(f"Default configuration written to: {output_path}")
    else:
        click.echo(text, nl=False)


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
