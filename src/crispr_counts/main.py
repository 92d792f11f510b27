import logging
from pathlib import Path
from typing import Optional

import typer

from .config import Settings
from .core.errors import ConsistencyError, StepFailedError, UsageError
from .models.records import AnalysisMode
from .services.pipeline import BatchPipeline, RunOptions
from .services.run_log import setup_run_logging

app = typer.Typer(
    help="Count sgRNAs in CRISPR screen samples and prepare MAGeCK input files"
)

logger = logging.getLogger(__name__)


def _settings(base_dir: Optional[Path], index_dir: Optional[Path]) -> Settings:
    overrides = {}
    if base_dir is not None:
        overrides["base_dir"] = base_dir
    if index_dir is not None:
        overrides["index_dir"] = index_dir
    return Settings(**overrides)


@app.command()
def info(
    base_dir: Optional[Path] = typer.Option(None, help="Project base directory."),
    index_dir: Optional[Path] = typer.Option(None, help="bowtie2 index directory."),
) -> None:
    """Show the resolved directories and default indices."""
    settings = _settings(base_dir, index_dir)
    typer.echo(f"Results:     {settings.results_dir}")
    typer.echo(f"Work:        {settings.work_dir}")
    typer.echo(f"Logs:        {settings.log_dir}")
    typer.echo(f"Indices:     {settings.resolved_index_dir}")
    typer.echo(f"Checkpoints: {settings.checkpoint_dir}")
    typer.echo(f"Gene index:     {settings.gene_index}")
    typer.echo(f"Promoter index: {settings.promoter_index}")


@app.command()
def run(
    sample_sheet: Path = typer.Argument(
        ..., help="CSV with columns sample,fastq_1,fastq_2,condition."
    ),
    crop_length: int = typer.Argument(..., help="Crop reads to this length."),
    index: Optional[str] = typer.Option(
        None, "--index", help="Use a single bowtie2 index instead of gene+promoter."
    ),
    merge: bool = typer.Option(
        False, "--merge", help="Also write a merged gene+promoter matrix."
    ),
    run_mageck: bool = typer.Option(
        False, "--run-mageck", help="Run MAGeCK for every contrast."
    ),
    mode: AnalysisMode = typer.Option(
        AnalysisMode.test, "--mode", help="MAGeCK mode: test or mle."
    ),
    base_dir: Optional[Path] = typer.Option(None, help="Project base directory."),
    index_dir: Optional[Path] = typer.Option(None, help="bowtie2 index directory."),
) -> None:
    """Process all samples of a sample sheet and prepare MAGeCK input."""
    settings = _settings(base_dir, index_dir)
    setup_run_logging(settings.batch_log_dir / "batch_process.log")
    options = RunOptions(
        crop_length=crop_length,
        index=index,
        merge=merge,
        run_mageck=run_mageck,
        mode=mode,
    )
    try:
        BatchPipeline(settings).run(sample_sheet, options)
    except UsageError as exc:
        logger.error(f"Usage error: {exc}")
        typer.echo(f"Error: {exc}", err=True)
        if exc.hint:
            typer.echo(f"Hint: {exc.hint}", err=True)
        raise typer.Exit(code=2)
    except (StepFailedError, ConsistencyError) as exc:
        logger.error(str(exc))
        typer.echo(
            f"Run failed, see {settings.batch_log_dir / 'batch_process.log'}", err=True
        )
        raise typer.Exit(code=1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
