"""
Shared fixtures: a small two-namespace project on disk and a fake tool
runner that writes plausible tool outputs instead of calling binaries.
"""

from pathlib import Path

import pytest

from crispr_counts.config import Settings
from crispr_counts.core.steps import ToolResult
from crispr_counts.core.tools import ToolRunner


GENE_LIBRARY = "sgRNA\tGene\nsg1\tGA\nsg2\tGA\nsg3\tGB\nsg4\tGB\nsg5\tGC\nsg6\tGD\n"
PROMOTER_LIBRARY = "p1_PA\t0\np2_PA\t0\np3_PB\t0\n"

# reference -> number of 20M reads, per (sample, namespace)
ALIGNMENTS = {
    ("s1", "gene"): {"sg1": 5, "sg2": 4, "sg3": 3, "sg4": 2, "sg5": 1},
    ("s2", "gene"): {"sg1": 2, "sg2": 7, "sg3": 1, "sg5": 3},
    ("s3", "gene"): {"sg2": 1, "sg3": 9},
    ("s1", "promoter"): {"p1_PA": 4, "p2_PA": 2, "p3_PB": 1},
    ("s2", "promoter"): {"p1_PA": 1, "p2_PA": 3, "p3_PB": 8},
    ("s3", "promoter"): {"p3_PB": 2},
}


def sam_lines(counts, cigar="20M"):
    lines = []
    for reference, n in counts.items():
        for i in range(n):
            lines.append(
                f"r{reference}_{i}\t0\t{reference}\t1\t42\t{cigar}\t*\t0\t0\tACGT\tIIII"
            )
    return lines


class FakeToolRunner(ToolRunner):
    """Writes tool outputs instead of running trimmomatic/flash/cutadapt/bowtie2/mageck."""

    def __init__(self, settings, alignments=None, fail_on=()):
        super().__init__(settings)
        self.alignments = ALIGNMENTS if alignments is None else alignments
        self.fail_on = set(fail_on)
        self.calls = []

    def _done(self, step, sample, outputs, log_file=None):
        self.calls.append((step, sample))
        if (step, sample) in self.fail_on:
            return ToolResult([step], 1, log_file)
        for output in outputs:
            Path(output).parent.mkdir(parents=True, exist_ok=True)
            Path(output).write_text(f"{step} output\n")
        return ToolResult([step], 0, log_file)

    def trim(self, read_1, read_2, clean_1, unpaired_1, clean_2, unpaired_2,
             crop_length, log_file):
        sample = Path(clean_1).name.split("_clean")[0]
        return self._done("trim", sample, [clean_1, clean_2, unpaired_1, unpaired_2], log_file)

    def merge_pairs(self, clean_1, clean_2, out_prefix, work_dir, log_file):
        work_dir = Path(work_dir)
        return self._done(
            "merge",
            out_prefix,
            [
                work_dir / f"{out_prefix}.extendedFrags.fastq.gz",
                work_dir / f"{out_prefix}.hist",
                work_dir / f"{out_prefix}.notCombined_1.fastq.gz",
            ],
            log_file,
        )

    def strip_adapters(self, merged, output, work_dir, log_file):
        sample = Path(merged).name.split(".")[0]
        return self._done("cutadapt", sample, [Path(work_dir) / Path(output).name], log_file)

    def align(self, reads, index_prefix, sam_file, log_file):
        sample = Path(reads).name.split(".")[0]
        # <sample>.extendedFrags.cutadapt.fastq.<namespace>.sam
        stem = Path(reads).name[: -len("gz")]
        namespace = Path(sam_file).name[len(stem): -len(".sam")]
        result = self._done(f"align_{namespace}", sample, [], log_file)
        if result.ok:
            counts = self.alignments.get((sample, namespace), {})
            lines = sam_lines(counts) + sam_lines({"sg6": 4}, cigar="12M8S")
            Path(sam_file).write_text("\n".join(lines) + "\n")
        return result

    def mageck_test(self, count_table, treatment_ids, control_ids, out_dir, prefix, **kwargs):
        out = Path(out_dir) / f"{prefix}.gene_summary.txt"
        return self._done("mageck_test", prefix, [out])

    def mageck_mle(self, count_table, design_matrix, out_dir, prefix, **kwargs):
        out = Path(out_dir) / f"{prefix}.gene_summary.txt"
        return self._done("mageck_mle", prefix, [out])


@pytest.fixture
def project(tmp_path):
    """Base directory with index files and fastq inputs for s1..s3."""
    index_dir = tmp_path / "data" / "index"
    index_dir.mkdir(parents=True)
    settings = Settings(base_dir=tmp_path)
    (index_dir / f"{settings.gene_index}.name").write_text(GENE_LIBRARY)
    (index_dir / f"{settings.gene_index}.1.bt2").write_text("")
    (index_dir / f"{settings.promoter_index}.name").write_text(PROMOTER_LIBRARY)
    (index_dir / f"{settings.promoter_index}.1.bt2l").write_text("")
    fastq_dir = tmp_path / "fastq"
    fastq_dir.mkdir()
    for sample in ("s1", "s2", "s3"):
        for read in ("R1", "R2"):
            (fastq_dir / f"{sample}_{read}.fq.gz").write_text("@r\nACGT\n+\nIIII\n")
    return settings


def write_sheet(settings, rows, name="samplesheet.csv"):
    fastq_dir = settings.base_dir / "fastq"
    lines = ["sample,fastq_1,fastq_2,condition"]
    for sample, condition in rows:
        lines.append(
            f"{sample},{fastq_dir / f'{sample}_R1.fq.gz'},"
            f"{fastq_dir / f'{sample}_R2.fq.gz'},{condition}"
        )
    path = settings.base_dir / name
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def two_sample_sheet(project):
    return write_sheet(project, [("s1", "control"), ("s2", "treated")])


@pytest.fixture
def fake_tools(project):
    return FakeToolRunner(project)


@pytest.fixture
def sheet_writer(project):
    return lambda rows, name="samplesheet.csv": write_sheet(project, rows, name)
