"""
Batch orchestration: samples -> count tables -> matrices -> designs -> MAGeCK.

Batch-level checkpoints are reset at the start of every run; per-sample step
checkpoints persist, so re-running the same command after a failure skips
every sample step that already produced its outputs.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..config import Settings
from ..core.checkpoint import CheckpointStore, namespace_scope, sample_scope
from ..core.design import contrast_designs
from ..core.errors import UsageError
from ..core.steps import StepRunner
from ..core.tools import ToolRunner
from ..models.records import (
    MERGED_NAMESPACE,
    AnalysisMode,
    ContrastDesign,
    ReferenceNamespace,
    SampleSheet,
)
from .aggregation import aggregate_namespace, matrix_file, merge_namespaces, remove_staging
from .analysis import design_file, dispatch_analyses, suggested_commands
from .io import read_sample_sheet, write_design
from .run_log import extra_log_file
from .sample_processing import SampleProcessor, SamplePaths

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACES = ("gene", "promoter")


@dataclass
class RunOptions:
    crop_length: int
    index: Optional[str] = None
    merge: bool = False
    run_mageck: bool = False
    mode: AnalysisMode = AnalysisMode.test


@dataclass
class RunSummary:
    processed_samples: List[str] = field(default_factory=list)
    skipped_samples: List[str] = field(default_factory=list)
    matrices: Dict[str, Path] = field(default_factory=dict)
    design_files: List[Path] = field(default_factory=list)
    skipped_contrasts: List[str] = field(default_factory=list)
    suggested_commands: List[str] = field(default_factory=list)


def resolve_namespaces(settings: Settings, index: Optional[str] = None) -> List[ReferenceNamespace]:
    index_dir = settings.resolved_index_dir
    if index:
        pairs = [(index, index)]
    else:
        pairs = [("gene", settings.gene_index), ("promoter", settings.promoter_index)]
    return [
        ReferenceNamespace(
            name=name,
            index_prefix=index_dir / basename,
            library_file=index_dir / f"{basename}.name",
        )
        for name, basename in pairs
    ]


def validate_options(options: RunOptions) -> None:
    if options.crop_length <= 0:
        raise UsageError(
            f"Crop length must be positive, got {options.crop_length}",
            hint="pass the read length to crop to, e.g. 100",
        )
    if options.index and options.merge:
        raise UsageError(
            "--merge combines the built-in gene and promoter namespaces "
            "and cannot be used with --index",
            hint="drop either --index or --merge",
        )
    try:
        AnalysisMode(options.mode)
    except ValueError:
        raise UsageError(
            f"Unknown MAGeCK mode '{options.mode}'", hint="use 'test' or 'mle'"
        ) from None


def check_references(namespaces: List[ReferenceNamespace]) -> None:
    """Every namespace needs its bowtie2 index and its guide library."""
    for namespace in namespaces:
        if not namespace.index_exists():
            raise UsageError(
                f"bowtie2 index {namespace.index_prefix} for namespace "
                f"'{namespace.name}' not found",
                hint=f"expected {namespace.index_prefix}.1.bt2 or .1.bt2l; "
                "check --index-dir",
            )
        if not namespace.library_file.is_file():
            raise UsageError(
                f"Guide library {namespace.library_file} for namespace "
                f"'{namespace.name}' not found",
                hint="place the <index>.name file next to the bowtie2 index",
            )


class BatchPipeline:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        tools: Optional[ToolRunner] = None,
    ):
        self.settings = settings if settings is not None else Settings()
        self.tools = tools if tools is not None else ToolRunner(self.settings)
        self.store = CheckpointStore(self.settings.checkpoint_dir)
        self.runner = StepRunner(self.store)

    def run(self, sample_sheet: Union[Path, str], options: RunOptions) -> RunSummary:
        """
        Process every sample, build matrices and designs, optionally run MAGeCK.

        Usage errors are raised before any checkpoint is touched; step
        failures raise StepFailedError with the failing scope cleared.
        """
        validate_options(options)
        sheet = read_sample_sheet(sample_sheet)
        namespaces = resolve_namespaces(self.settings, options.index)
        check_references(namespaces)
        with extra_log_file(self.settings.batch_log_dir / "batch_process.log"):
            return self._execute(sheet, namespaces, options)

    def _execute(
        self,
        sheet: SampleSheet,
        namespaces: List[ReferenceNamespace],
        options: RunOptions,
    ) -> RunSummary:
        s = self.settings
        mode = AnalysisMode(options.mode)

        self.store.reset()
        logger.info("Starting batch processing")
        logger.info(f"Sample sheet: {sheet.path} ({len(sheet)} samples)")
        logger.info(f"Crop length: {options.crop_length}")
        logger.info(f"Namespaces: {', '.join(ns.name for ns in namespaces)}")
        if options.run_mageck:
            logger.info(f"MAGeCK will be run in '{mode.value}' mode")

        summary = RunSummary()
        self.process_samples(sheet, namespaces, options.crop_length, summary)

        matrix_namespaces = [ns.name for ns in namespaces]
        logger.info(f"Conditions: {', '.join(sheet.conditions)}")
        logger.info(f"Using '{s.control_condition}' as control condition")
        for ns in matrix_namespaces:
            summary.matrices[ns] = self.build_matrix(sheet, ns)
        if options.merge:
            summary.matrices[MERGED_NAMESPACE] = self.build_merged(
                sheet, matrix_namespaces
            )
            matrix_namespaces.append(MERGED_NAMESPACE)
        designs = contrast_designs(sheet, matrix_namespaces, s.control_condition)
        for ns in matrix_namespaces:
            summary.design_files.extend(
                self.write_designs([d for d in designs if d.namespace == ns], ns)
            )
        self.runner.run_step(
            "tmp_files_cleaned", [], lambda: remove_staging(s.matrix_dir)
        )
        self.store.mark_done("results_prepared")
        logger.info(f"Batch processing finished, results in {s.matrix_dir}")

        if options.run_mageck:
            self.run_analyses(designs, mode, summary)
        else:
            summary.suggested_commands = suggested_commands(
                designs, s.matrix_dir, s.analysis_dir
            )
            logger.info("MAGeCK can be run with the following commands:")
            for command in summary.suggested_commands:
                logger.info(command)
        return summary

    def process_samples(
        self,
        sheet: SampleSheet,
        namespaces: List[ReferenceNamespace],
        crop_length: int,
        summary: RunSummary,
    ) -> None:
        for sample in sheet:
            missing = [p for p in (sample.fastq_1, sample.fastq_2) if not Path(p).is_file()]
            if missing:
                logger.warning(
                    f"Input file {missing[0]} does not exist, skipping sample {sample.name}"
                )
                summary.skipped_samples.append(sample.name)
                continue
            logger.info(f"Processing sample {sample.name}, condition {sample.condition}")
            processor = SampleProcessor(
                sample, namespaces, crop_length, self.settings, self.tools
            )
            self.runner.run_step(
                sample_scope("sample", sample.name),
                processor.result_files,
                processor.run,
            )
            summary.processed_samples.append(sample.name)
        self.store.mark_done("samples_processed")

    def top90_files(self, sheet: SampleSheet, namespace: str) -> Dict[str, Path]:
        return {
            sample.name: SamplePaths.for_sample(sample.name, self.settings).top90(namespace)
            for sample in sheet
        }

    def build_matrix(self, sheet: SampleSheet, namespace: str) -> Path:
        out = matrix_file(self.settings.matrix_dir, namespace)
        self.runner.run_step(
            namespace_scope("index", namespace) + "_processed",
            [out],
            lambda: aggregate_namespace(
                sheet,
                self.top90_files(sheet, namespace),
                namespace,
                self.settings.matrix_dir,
            ),
        )
        return out

    def build_merged(self, sheet: SampleSheet, namespaces: List[str]) -> Path:
        out = matrix_file(self.settings.matrix_dir, MERGED_NAMESPACE)
        self.runner.run_step(
            namespace_scope("index", MERGED_NAMESPACE) + "_processed",
            [out],
            lambda: merge_namespaces(
                namespaces, sheet.names, self.settings.matrix_dir, MERGED_NAMESPACE
            ),
        )
        return out

    def write_designs(self, designs: List[ContrastDesign], namespace: str) -> List[Path]:
        paths = [design_file(self.settings.matrix_dir, d) for d in designs]

        def __write():
            for design, path in zip(designs, paths):
                write_design(design, path)
                logger.info(
                    f"Wrote design {path.name}: {len(design.control_samples)} control, "
                    f"{len(design.treatment_samples)} treatment samples"
                )

        self.runner.run_step(namespace_scope("design", namespace), paths, __write)
        return paths

    def run_analyses(
        self, designs: List[ContrastDesign], mode: AnalysisMode, summary: RunSummary
    ) -> None:
        s = self.settings
        s.analysis_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Running MAGeCK {mode.value}")
        summary.skipped_contrasts = dispatch_analyses(
            self.runner, self.tools, designs, mode, s.matrix_dir, s.analysis_dir
        )
        self.store.mark_done("mageck_analysis_completed")
        logger.info(f"All MAGeCK analyses finished, results in {s.analysis_dir}")
