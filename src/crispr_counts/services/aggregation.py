"""
Matrix building for one namespace, namespace merging and staging cleanup.
"""

import logging
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from ..core.errors import ConsistencyError, MissingArtifactError
from ..core.matrix import build_count_matrix, check_matrix, merge_matrices, verify_header
from ..models.records import KEY_COLUMNS, CountMatrix, CountTable, SampleSheet
from .io import read_count_table, read_header, read_matrix, write_count_table, write_matrix

logger = logging.getLogger(__name__)


def matrix_file(matrix_dir: Union[Path, str], namespace: str) -> Path:
    return Path(matrix_dir) / f"all_samples_{namespace}.count.txt"


def staging_dir(matrix_dir: Union[Path, str], namespace: str) -> Path:
    return Path(matrix_dir) / f"tmp_{namespace}"


def stage_sample_tables(
    sheet: SampleSheet,
    count_files: Dict[str, Path],
    namespace: str,
    stage_dir: Path,
) -> Dict[str, Optional[CountTable]]:
    """
    Load each sample's top-90% table and stage a copy in `stage_dir`.

    Samples whose table is missing map to None.
    """
    stage_dir.mkdir(parents=True, exist_ok=True)
    tables: Dict[str, Optional[CountTable]] = {}
    for sample in sheet:
        path = count_files.get(sample.name)
        if path is None or not Path(path).is_file():
            logger.warning(
                f"Count table for sample {sample.name} ({namespace}) not found: {path}"
            )
            tables[sample.name] = None
            continue
        table = read_count_table(path, sample=sample.name, namespace=namespace)
        write_count_table(table, stage_dir / f"{sample.name}_counts.txt")
        tables[sample.name] = table
    return tables


def aggregate_namespace(
    sheet: SampleSheet,
    count_files: Dict[str, Path],
    namespace: str,
    matrix_dir: Union[Path, str],
) -> CountMatrix:
    """
    Build and write ``all_samples_<namespace>.count.txt``.

    Parameters
    ----------
    sheet : SampleSheet
        Samples in sheet order.
    count_files : dict
        Sample name to its top-90% count table for this namespace.
    namespace : str
        Namespace name.
    matrix_dir : Path or str
        Output directory; staging goes to ``tmp_<namespace>`` below it.
    """
    stage_dir = staging_dir(matrix_dir, namespace)
    tables = stage_sample_tables(sheet, count_files, namespace, stage_dir)
    matrix = build_count_matrix(sheet.names, tables, namespace)
    check_matrix(matrix)
    matrix.frame[KEY_COLUMNS].to_csv(
        stage_dir / "sgrna_gene.txt", sep="\t", index=False, header=False
    )
    out = write_matrix(matrix, matrix_file(matrix_dir, namespace))
    logger.info(
        f"Wrote count matrix {out} with {matrix.shape[0]} sgRNAs and "
        f"{len(matrix.samples)} samples"
    )
    return matrix


def merge_namespaces(
    namespaces: Sequence[str],
    sample_names: Sequence[str],
    matrix_dir: Union[Path, str],
    merged_namespace: str = "merged",
) -> CountMatrix:
    """
    Concatenate per-namespace matrices into ``all_samples_merged.count.txt``
    and verify the written header against the expected sample names.
    """
    matrices = []
    for namespace in namespaces:
        path = matrix_file(matrix_dir, namespace)
        if not path.is_file():
            raise MissingArtifactError(f"Count matrix {path} does not exist")
        matrices.append(read_matrix(path, namespace=namespace))
    merged = merge_matrices(matrices, namespace=merged_namespace)
    out = write_matrix(merged, matrix_file(matrix_dir, merged_namespace))
    expected_rows = sum(m.shape[0] for m in matrices)
    try:
        verify_header(read_header(out), sample_names)
        written = read_matrix(out, namespace=merged_namespace)
        if written.shape[0] != expected_rows:
            raise ConsistencyError(
                f"Merged matrix {out} has {written.shape[0]} rows, "
                f"expected {expected_rows}"
            )
    except ConsistencyError:
        out.unlink()
        raise
    logger.info(f"Wrote merged count matrix {out} ({expected_rows} sgRNAs)")
    return merged


def remove_staging(matrix_dir: Union[Path, str]) -> List[Path]:
    removed = []
    for path in Path(matrix_dir).glob("tmp_*"):
        if path.is_dir():
            shutil.rmtree(path)
            removed.append(path)
    if removed:
        logger.info(f"Removed staging directories: {', '.join(p.name for p in removed)}")
    return removed
