"""
Per-sample processing: trim, merge, align and count one sample.

Every stage is a step of the sample's own StepRunner, whose checkpoints live
in the sample work directory and survive between invocations.
"""

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from ..config import Settings
from ..core.checkpoint import CheckpointStore, namespace_scope
from ..core.counting import extract_sample_counts
from ..core.errors import MissingArtifactError
from ..core.steps import StepRunner, ToolResult
from ..core.tools import ToolRunner
from ..models.records import ReferenceNamespace, Sample
from .io import (
    iter_alignment_records,
    read_guide_library,
    write_count_table,
    write_coverage,
)
from .run_log import extra_log_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SamplePaths:
    sample: str
    work_dir: Path
    result_dir: Path
    log_dir: Path

    @classmethod
    def for_sample(cls, sample: str, settings: Settings) -> "SamplePaths":
        return cls(
            sample=sample,
            work_dir=settings.work_dir / sample,
            result_dir=settings.results_dir / sample,
            log_dir=settings.log_dir / sample,
        )

    def work(self, name: str) -> Path:
        return self.work_dir / name

    @property
    def checkpoint_dir(self) -> Path:
        return self.work_dir / "checkpoints"

    @property
    def main_log(self) -> Path:
        return self.log_dir / f"{self.sample}_main.log"

    @property
    def linked_reads(self) -> List[Path]:
        return [self.work(f"{self.sample}_R1.fq.gz"), self.work(f"{self.sample}_R2.fq.gz")]

    @property
    def clean_reads(self) -> List[Path]:
        return [
            self.work(f"{self.sample}_clean_R1.fq.gz"),
            self.work(f"{self.sample}_clean_R2.fq.gz"),
        ]

    @property
    def unpaired_reads(self) -> List[Path]:
        return [
            self.work(f"{self.sample}_un_R1.fq.gz"),
            self.work(f"{self.sample}_un_R2.fq.gz"),
        ]

    @property
    def merged_reads(self) -> Path:
        return self.work(f"{self.sample}.extendedFrags.fastq.gz")

    @property
    def guide_reads(self) -> Path:
        return self.work(f"{self.sample}.extendedFrags.cutadapt.fastq.gz")

    def sam(self, namespace: str) -> Path:
        return self.work(f"{self.sample}.extendedFrags.cutadapt.fastq.{namespace}.sam")

    def count_files(self, namespace: str, directory: Path = None) -> List[Path]:
        """raw table, top-90% table and coverage stats for one namespace."""
        directory = self.work_dir if directory is None else directory
        stem = f"{self.sample}.{namespace}"
        return [
            directory / f"{stem}.raw.count.txt",
            directory / f"{stem}.top90.count.mageck.txt",
            directory / f"{stem}.sgRNAnumber.stats.txt",
        ]

    def top90(self, namespace: str) -> Path:
        return self.count_files(namespace, self.result_dir)[1]

    def tool_log(self, name: str) -> Path:
        return self.log_dir / f"{self.sample}_{name}.log"


def count_sample(
    sam_file: Path,
    library_file: Path,
    sample: str,
    namespace: str,
    outputs: Sequence[Path],
    top_fraction: float = 0.9,
    match_lengths: Sequence[int] = (19, 20),
    gene_tag: str = "_BmEg",
) -> None:
    """Count one SAM file and write raw, top-90% and coverage files."""
    if not Path(sam_file).is_file():
        raise MissingArtifactError(f"SAM file {sam_file} does not exist")
    library = read_guide_library(library_file, gene_tag=gene_tag, namespace=namespace)
    raw, top90, coverage = extract_sample_counts(
        iter_alignment_records(sam_file),
        library,
        sample=sample,
        namespace=namespace,
        fraction=top_fraction,
        match_lengths=match_lengths,
    )
    raw_file, top_file, stats_file = outputs
    write_count_table(raw, raw_file)
    write_count_table(top90, top_file)
    write_coverage(coverage, stats_file)
    logger.info(
        f"{sample}/{namespace}: {len(raw.nonzero())} guides detected, "
        f"{len(top90)} kept in top table, "
        f"{coverage.sequenced_genes}/{coverage.designed_genes} genes covered"
    )


class SampleProcessor:
    """Runs the step chain of one sample against a set of namespaces."""

    def __init__(
        self,
        sample: Sample,
        namespaces: Sequence[ReferenceNamespace],
        crop_length: int,
        settings: Settings,
        tools: ToolRunner,
    ):
        self.sample = sample
        self.namespaces = list(namespaces)
        self.crop_length = crop_length
        self.settings = settings
        self.tools = tools
        self.paths = SamplePaths.for_sample(sample.name, settings)
        self.runner = StepRunner(
            CheckpointStore(self.paths.checkpoint_dir), label=sample.name
        )

    @property
    def result_files(self) -> List[Path]:
        return [self.paths.top90(ns.name) for ns in self.namespaces]

    def run(self) -> None:
        for directory in (self.paths.work_dir, self.paths.result_dir, self.paths.log_dir):
            directory.mkdir(parents=True, exist_ok=True)
        with extra_log_file(self.paths.main_log):
            logger.info(f"Processing sample {self.sample.name}")
            self.runner.run_step("trim", self.paths.clean_reads, self._trim)
            self.runner.run_step("merge", [self.paths.guide_reads], self._merge)
            for namespace in self.namespaces:
                self.runner.run_step(
                    namespace_scope("align", namespace.name),
                    [self.paths.sam(namespace.name)],
                    lambda ns=namespace: self._align(ns),
                )
            for namespace in self.namespaces:
                self.runner.run_step(
                    namespace_scope("count", namespace.name),
                    self.paths.count_files(namespace.name),
                    lambda ns=namespace: self._count(ns),
                )
            collected = [
                path
                for ns in self.namespaces
                for path in self.paths.count_files(ns.name, self.paths.result_dir)
            ]
            self.runner.run_step("collect", collected, self._collect)
            logger.info(f"Sample {self.sample.name} finished")

    def _trim(self) -> ToolResult:
        for source, link in zip(
            (self.sample.fastq_1, self.sample.fastq_2), self.paths.linked_reads
        ):
            if link.is_symlink() or link.exists():
                link.unlink()
            link.symlink_to(Path(source).resolve())
        clean_1, clean_2 = self.paths.clean_reads
        un_1, un_2 = self.paths.unpaired_reads
        result = self.tools.trim(
            *self.paths.linked_reads,
            clean_1,
            un_1,
            clean_2,
            un_2,
            crop_length=self.crop_length,
            log_file=self.paths.tool_log("01_trim"),
        )
        for unpaired in self.paths.unpaired_reads:
            unpaired.unlink(missing_ok=True)
        return result

    def _merge(self) -> List[ToolResult]:
        missing = [p for p in self.paths.clean_reads if not p.is_file()]
        if missing:
            raise MissingArtifactError(
                f"Trimmed reads missing: {', '.join(str(p) for p in missing)}"
            )
        merged = self.tools.merge_pairs(
            *self.paths.clean_reads,
            out_prefix=self.sample.name,
            work_dir=self.paths.work_dir,
            log_file=self.paths.tool_log("02_flash"),
        )
        if not merged.ok:
            return [merged]
        for pattern in ("*.hist*", "*.notCombined*"):
            for leftover in self.paths.work_dir.glob(pattern):
                leftover.unlink()
        stripped = self.tools.strip_adapters(
            self.paths.merged_reads,
            self.paths.guide_reads,
            work_dir=self.paths.work_dir,
            log_file=self.paths.tool_log("03_cutadapt"),
        )
        return [merged, stripped]

    def _align(self, namespace: ReferenceNamespace) -> ToolResult:
        if not self.paths.guide_reads.is_file():
            raise MissingArtifactError(
                f"Adapter-stripped reads missing: {self.paths.guide_reads}"
            )
        if not namespace.index_exists():
            raise MissingArtifactError(
                f"bowtie2 index {namespace.index_prefix} not found"
            )
        return self.tools.align(
            self.paths.guide_reads,
            namespace.index_prefix,
            self.paths.sam(namespace.name),
            log_file=self.paths.tool_log(f"04_bowtie2.{namespace.name}"),
        )

    def _count(self, namespace: ReferenceNamespace) -> None:
        count_sample(
            self.paths.sam(namespace.name),
            namespace.library_file,
            sample=self.sample.name,
            namespace=namespace.name,
            outputs=self.paths.count_files(namespace.name),
            top_fraction=self.settings.top_fraction,
            match_lengths=self.settings.match_lengths,
            gene_tag=self.settings.gene_tag,
        )

    def _collect(self) -> None:
        self.paths.result_dir.mkdir(parents=True, exist_ok=True)
        for namespace in self.namespaces:
            for path in self.paths.count_files(namespace.name):
                shutil.copy(path, self.paths.result_dir / path.name)
        logger.info(f"Copied count tables to {self.paths.result_dir}")
