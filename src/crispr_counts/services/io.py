"""
Readers and writers for the pipeline's on-disk formats.
"""

import logging
import re
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

import pandas as pd
from pandas import DataFrame

from ..core.errors import MissingArtifactError, UsageError
from ..models.records import (
    DESIGN_COLUMNS,
    GENE_COL,
    KEY_COLUMNS,
    SAMPLE_SHEET_COLUMNS,
    SGRNA_COL,
    ContrastDesign,
    CountMatrix,
    CountTable,
    GeneCoverage,
    GuideRecord,
    Sample,
    SampleSheet,
)

logger = logging.getLogger(__name__)

SAFE_NAME = re.compile(r"^[\w.\-]+$")


def _read_sheet_csv(path: Path) -> DataFrame:
    try:
        return pd.read_csv(
            path, dtype=str, skip_blank_lines=True, keep_default_na=False, na_filter=False
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise UsageError(
            f"Sample sheet {path} cannot be parsed: {exc}",
            hint="the sheet must be a comma separated file with four columns",
        ) from exc


def read_sample_sheet(path: Union[Path, str]) -> SampleSheet:
    """
    Load the sample sheet CSV.

    Required columns: sample, fastq_1, fastq_2, condition. Rows without a
    sample name are skipped. Relative fastq paths are kept as given. Cell
    values are taken literally, so a sample called ``NA`` stays ``NA``.
    """
    path = Path(path)
    if not path.is_file():
        raise UsageError(
            f"Sample sheet {path} does not exist",
            hint="pass the path of a CSV with columns sample,fastq_1,fastq_2,condition",
        )
    sheet = _read_sheet_csv(path)
    sheet.columns = [c.strip() for c in sheet.columns]
    missing = [c for c in SAMPLE_SHEET_COLUMNS if c not in sheet.columns]
    if missing:
        raise UsageError(
            f"Sample sheet {path} is missing columns {missing}. "
            f"Found: {list(sheet.columns)}",
            hint="the header must be: sample,fastq_1,fastq_2,condition",
        )
    samples = []
    for row in sheet.itertuples(index=False):
        name = row.sample.strip()
        if not name:
            continue
        samples.append(
            Sample(
                name=name,
                fastq_1=Path(row.fastq_1.strip()),
                fastq_2=Path(row.fastq_2.strip()),
                condition=row.condition.strip(),
            )
        )
    # names end up in file names and checkpoint markers
    bad = [
        value
        for s in samples
        for value in (s.name, s.condition)
        if not SAFE_NAME.match(value)
    ]
    if bad:
        raise UsageError(
            f"Sample sheet {path} has sample or condition names with unsupported "
            f"characters: {sorted(set(bad))}",
            hint="use only letters, digits, '_', '-' and '.'",
        )
    names = [s.name for s in samples]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise UsageError(
            f"Sample sheet {path} lists samples more than once: {duplicates}",
            hint="sample names must be unique",
        )
    if not samples:
        raise UsageError(f"Sample sheet {path} contains no samples")
    return SampleSheet(samples=tuple(samples), path=path)


def guide_record(reference: str, gene_tag: str = "_BmEg", namespace: str = "") -> GuideRecord:
    """
    Split a ``<sgRNA>_<Gene>`` reference name.

    The split happens at the first occurrence of `gene_tag`, whose leading
    underscores are the separator (``ACGT_BmEg12_2`` -> ``ACGT`` /
    ``BmEg12_2``). Names without the tag are split on the last underscore.
    """
    start = reference.find(gene_tag) if gene_tag else -1
    if start > 0:
        separator = len(gene_tag) - len(gene_tag.lstrip("_"))
        sgrna, gene = reference[:start], reference[start + separator:]
    elif "_" in reference:
        sgrna, gene = reference.rsplit("_", 1)
    else:
        raise ValueError(f"cannot split reference name {reference!r} into sgRNA/Gene")
    return GuideRecord(reference=reference, sgrna=sgrna, gene=gene, namespace=namespace)


def read_guide_library(
    path: Union[Path, str], gene_tag: str = "_BmEg", namespace: str = ""
) -> DataFrame:
    """
    Load a guide library as (reference, sgRNA, Gene).

    Two layouts are accepted:
    - a TSV with a header containing sgRNA and Gene, plus an optional
      ``reference`` column with the aligned reference name (defaults to
      sgRNA)
    - a headerless ``.name`` file whose first column is ``<sgRNA>_<Gene>``;
      it is split with `guide_record`
    """
    path = Path(path)
    if not path.is_file():
        raise MissingArtifactError(f"Guide library {path} does not exist")
    with path.open() as handle:
        first = handle.readline().rstrip("\n").split("\t")
    if SGRNA_COL in first and GENE_COL in first:
        library = pd.read_csv(
            path, sep="\t", dtype=str, keep_default_na=False, na_filter=False
        )
        if "reference" not in library.columns:
            library["reference"] = library[SGRNA_COL]
    else:
        names = pd.read_csv(
            path,
            sep=r"\s+",
            header=None,
            usecols=[0],
            dtype=str,
            engine="python",
            keep_default_na=False,
            na_filter=False,
        )[0]
        unsplittable = [n for n in names if "_" not in n]
        if unsplittable:
            raise ValueError(
                f"Guide library {path}: cannot split reference names into "
                f"sgRNA/Gene, e.g. {unsplittable[:3]}"
            )
        records = [guide_record(n, gene_tag, namespace) for n in names]
        library = pd.DataFrame(
            {
                "reference": [r.reference for r in records],
                SGRNA_COL: [r.sgrna for r in records],
                GENE_COL: [r.gene for r in records],
            }
        )
    return library[["reference", SGRNA_COL, GENE_COL]].drop_duplicates(
        subset="reference"
    )


def iter_alignment_records(sam_file: Union[Path, str]) -> Iterator[Tuple[str, str]]:
    """Yield (reference, cigar) for every alignment line of a SAM file."""
    with Path(sam_file).open() as handle:
        for line in handle:
            if not line.strip() or line.startswith("@"):
                continue
            fields = line.rstrip("\n").split("\t")
            if len(fields) < 6:
                continue
            yield fields[2], fields[5]


def write_count_table(table: CountTable, path: Union[Path, str]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table.frame[KEY_COLUMNS + [table.sample]].to_csv(path, sep="\t", index=False)
    return path


def read_count_table(
    path: Union[Path, str], sample: Optional[str] = None, namespace: str = ""
) -> CountTable:
    """Read a per-sample count table (sgRNA, Gene, <sample>)."""
    path = Path(path)
    if not path.is_file():
        raise MissingArtifactError(f"Count table {path} does not exist")
    frame = pd.read_csv(
        path,
        sep="\t",
        dtype={SGRNA_COL: str, GENE_COL: str},
        keep_default_na=False,
        na_filter=False,
    )
    if frame.shape[1] != 3:
        raise ValueError(
            f"Count table {path} has {frame.shape[1]} columns, expected 3"
        )
    column = frame.columns[2]
    if sample is not None and column != sample:
        raise ValueError(
            f"Count table {path} is labelled '{column}', expected '{sample}'"
        )
    frame[column] = frame[column].astype("int64")
    return CountTable(sample=column, namespace=namespace, frame=frame)


def write_coverage(coverage: GeneCoverage, path: Union[Path, str]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = ["Number_of_sgRNAs_per_gene\tNumber_of_genes"]
    for n_guides, n_genes in sorted(coverage.guides_per_gene.items()):
        lines.append(f"{n_guides}\t{n_genes}")
    lines.append(f"total_sequenced_gene_number\t{coverage.sequenced_genes}")
    lines.append(f"total_designed_gene_number\t{coverage.designed_genes}")
    path.write_text("\n".join(lines) + "\n")
    return path


def write_matrix(matrix: CountMatrix, path: Union[Path, str]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    matrix.frame.to_csv(path, sep="\t", index=False)
    return path


def read_matrix(path: Union[Path, str], namespace: str = "") -> CountMatrix:
    path = Path(path)
    if not path.is_file():
        raise MissingArtifactError(f"Count matrix {path} does not exist")
    frame = pd.read_csv(
        path,
        sep="\t",
        dtype={SGRNA_COL: str, GENE_COL: str},
        keep_default_na=False,
        na_filter=False,
    )
    return CountMatrix(namespace=namespace, frame=frame, samples=list(frame.columns[2:]))


def read_header(path: Union[Path, str]) -> List[str]:
    with Path(path).open() as handle:
        return handle.readline().rstrip("\n").split("\t")


def write_design(design: ContrastDesign, path: Union[Path, str]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    design.to_frame().to_csv(path, sep="\t", index=False)
    return path


def read_design(path: Union[Path, str]) -> Tuple[List[str], List[str]]:
    """Return (control_ids, treatment_ids) from a design file."""
    frame = pd.read_csv(
        path, sep="\t", dtype={"sample": str}, keep_default_na=False, na_filter=False
    )
    missing = [c for c in DESIGN_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"Design file {path} is missing columns {missing}")
    controls = frame.loc[frame["control"] == 1, "sample"].tolist()
    treatments = frame.loc[frame["treatment"] == 1, "sample"].tolist()
    return controls, treatments
