"""
PyPipeGraph2 job wrappers for sgRNA counting and MAGeCK input preparation.
"""

from pypipegraph2 import Job, FileGeneratingJob, MultiFileGeneratingJob
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union
from crispr_counts.core.design import contrast_design
from crispr_counts.core.tools import ToolRunner
from crispr_counts.models.records import AnalysisMode, SampleSheet
from crispr_counts.services.aggregation import aggregate_namespace, matrix_file
from crispr_counts.services.analysis import run_contrast
from crispr_counts.services.io import write_design
from crispr_counts.services.sample_processing import count_sample


def sgrna_count_job(
    sam_file: Union[Path, str],
    library_file: Union[Path, str],
    sample: str,
    namespace: str,
    out_dir: Union[Path, str],
    top_fraction: float = 0.9,
    match_lengths: Sequence[int] = (19, 20),
    gene_tag: str = "_BmEg",
    dependencies: List[Job] = [],
) -> MultiFileGeneratingJob:
    """
    Create pypipegraph job counting one sample's SAM file.

    Parameters
    ----------
    sam_file : Path or str
        bowtie2 output for this sample and namespace.
    library_file : Path or str
        Guide library of the namespace.
    sample : str
        Sample name, used as the count column header.
    namespace : str
        Namespace name, part of the output file names.
    out_dir : Path or str
        Output directory.
    top_fraction : float
        Fraction of distinct detected guides kept in the top table.
    match_lengths : sequence of int
        CIGAR match lengths that pass the quality gate.
    gene_tag : str
        Gene tag splitting legacy ``.name`` reference names.
    dependencies : list
        List of pypipegraph Jobs to depend on.

    Returns
    -------
    MultiFileGeneratingJob
        Job writing the raw table, the top-90% table and the coverage stats.
    """
    out_dir = Path(out_dir)
    stem = f"{sample}.{namespace}"
    outfiles = [
        out_dir / f"{stem}.raw.count.txt",
        out_dir / f"{stem}.top90.count.mageck.txt",
        out_dir / f"{stem}.sgRNAnumber.stats.txt",
    ]

    def __dump(
        outfiles,
        sam_file=sam_file,
        library_file=library_file,
        sample=sample,
        namespace=namespace,
        top_fraction=top_fraction,
        match_lengths=match_lengths,
        gene_tag=gene_tag,
    ):
        count_sample(
            Path(sam_file),
            Path(library_file),
            sample=sample,
            namespace=namespace,
            outputs=outfiles,
            top_fraction=top_fraction,
            match_lengths=match_lengths,
            gene_tag=gene_tag,
        )

    return MultiFileGeneratingJob(outfiles, __dump).depends_on(dependencies)


def count_matrix_job(
    sheet: SampleSheet,
    count_files: Dict[str, Union[Path, str]],
    namespace: str,
    matrix_dir: Union[Path, str],
    dependencies: List[Job] = [],
) -> FileGeneratingJob:
    outfile = matrix_file(matrix_dir, namespace)

    def __dump(
        outfile,
        sheet=sheet,
        count_files=count_files,
        namespace=namespace,
        matrix_dir=matrix_dir,
    ):
        aggregate_namespace(
            sheet,
            {name: Path(path) for name, path in count_files.items()},
            namespace,
            matrix_dir,
        )

    return FileGeneratingJob(outfile, __dump).depends_on(dependencies)


def contrast_design_job(
    sheet: SampleSheet,
    condition: str,
    namespace: str,
    output_file: Union[Path, str],
    control_condition: str = "control",
    dependencies: List[Job] = [],
) -> FileGeneratingJob:
    def __dump(
        output_file,
        sheet=sheet,
        condition=condition,
        namespace=namespace,
        control_condition=control_condition,
    ):
        write_design(
            contrast_design(sheet, condition, namespace, control_condition),
            output_file,
        )

    return FileGeneratingJob(Path(output_file), __dump).depends_on(dependencies)


def mageck_contrast_job(
    count_table: Union[Path, str],
    design_file: Union[Path, str],
    out_dir: Union[Path, str],
    prefix: str,
    mode: AnalysisMode = AnalysisMode.test,
    tools: Optional[ToolRunner] = None,
    dependencies: List[Job] = [],
) -> FileGeneratingJob:
    outfile = Path(out_dir) / f"{prefix}.gene_summary.tsv"

    def __dump(
        outfile,
        count_table=count_table,
        design_file=design_file,
        out_dir=out_dir,
        prefix=prefix,
        mode=mode,
        tools=tools,
    ):
        runner = tools if tools is not None else ToolRunner()
        result = run_contrast(
            runner, mode, Path(count_table), Path(design_file), Path(out_dir), prefix
        )
        if not result.ok:
            raise RuntimeError(f"MAGeCK {AnalysisMode(mode).value}: {result.describe()}")

    return FileGeneratingJob(outfile, __dump).depends_on(dependencies)
