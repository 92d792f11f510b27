"""
Aggregation of per-sample count tables into one count matrix.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import pandas as pd
from pandas import DataFrame

from ..models.records import GENE_COL, KEY_COLUMNS, SGRNA_COL, CountMatrix, CountTable
from .errors import ConsistencyError, MissingArtifactError

logger = logging.getLogger(__name__)


def choose_reference_sample(
    samples: Sequence[str], tables: Mapping[str, Optional[CountTable]]
) -> str:
    """
    Pick the sample whose keys become the matrix rows.

    This is the first sample in sheet order that has a count table.
    """
    for sample in samples:
        if tables.get(sample) is not None:
            if sample != samples[0]:
                logger.warning(
                    f"No count table for first sample '{samples[0]}', "
                    f"using '{sample}' for sgRNA/Gene keys"
                )
            return sample
    raise MissingArtifactError(
        f"None of the samples {list(samples)} has a count table"
    )


def build_count_matrix(
    samples: Sequence[str],
    tables: Mapping[str, Optional[CountTable]],
    namespace: str,
) -> CountMatrix:
    """
    Build a rectangular count matrix.

    Parameters
    ----------
    samples : sequence of str
        Sample names in sheet order; this is the column order.
    tables : mapping
        Sample name to its top-90% CountTable, or None if the sample has no
        table (failed or skipped upstream).
    namespace : str
        Namespace the matrix belongs to.

    Returns
    -------
    CountMatrix
        Rows are the (sgRNA, Gene) keys of the reference sample in its file
        order; every sample cell is a non-negative integer, 0 when absent.
    """
    samples = list(samples)
    if len(set(samples)) != len(samples):
        raise ValueError(f"Duplicate sample names: {samples}")
    reference = choose_reference_sample(samples, tables)
    matrix = (
        tables[reference].frame[KEY_COLUMNS].drop_duplicates().reset_index(drop=True)
    )
    for sample in samples:
        table = tables.get(sample)
        if table is None:
            logger.warning(
                f"Sample '{sample}' has no {namespace} count table, filling with 0"
            )
            matrix[sample] = 0
            continue
        column = table.frame[KEY_COLUMNS + [sample]]
        column = column.groupby(KEY_COLUMNS, as_index=False, sort=False)[sample].sum()
        matrix = matrix.merge(column, on=KEY_COLUMNS, how="left")
        matrix[sample] = matrix[sample].fillna(0).astype("int64")
    return CountMatrix(namespace=namespace, frame=matrix, samples=samples)


def check_matrix(matrix: CountMatrix) -> None:
    """Raise ConsistencyError if the matrix breaks its shape invariants."""
    frame = matrix.frame
    if frame.shape[1] != 2 + len(matrix.samples):
        raise ConsistencyError(
            f"Matrix {matrix.namespace} has {frame.shape[1]} columns, "
            f"expected {2 + len(matrix.samples)}"
        )
    values = frame[matrix.samples]
    if values.isna().any().any():
        raise ConsistencyError(f"Matrix {matrix.namespace} contains missing values")
    if (values < 0).any().any():
        raise ConsistencyError(f"Matrix {matrix.namespace} contains negative counts")


def find_key_collisions(matrices: Sequence[CountMatrix]) -> List[str]:
    seen: Dict[str, str] = {}
    collisions = []
    for matrix in matrices:
        for sgrna in matrix.frame[SGRNA_COL]:
            owner = seen.setdefault(sgrna, matrix.namespace)
            if owner != matrix.namespace:
                collisions.append(sgrna)
    return sorted(set(collisions))


def merge_matrices(
    matrices: Sequence[CountMatrix], namespace: str = "merged"
) -> CountMatrix:
    """
    Concatenate the rows of per-namespace matrices.

    All matrices must share the same sample columns and their sgRNA keys
    must be disjoint.
    """
    if not matrices:
        raise ValueError("No matrices to merge")
    samples = list(matrices[0].samples)
    for matrix in matrices[1:]:
        if list(matrix.samples) != samples:
            raise ConsistencyError(
                f"Sample columns differ between {matrices[0].namespace} "
                f"({samples}) and {matrix.namespace} ({matrix.samples})"
            )
    collisions = find_key_collisions(matrices)
    if collisions:
        shown = ", ".join(collisions[:10])
        raise ConsistencyError(
            f"{len(collisions)} sgRNA ids occur in more than one namespace: {shown}"
        )
    frame = pd.concat([m.frame for m in matrices], ignore_index=True)
    return CountMatrix(namespace=namespace, frame=frame, samples=samples)


def verify_header(header: Sequence[str], expected_samples: Sequence[str]) -> None:
    """
    Check a written matrix header against the expected sample names.

    Raises
    ------
    ConsistencyError
        If the key columns are wrong or the sample name set differs.
    """
    header = list(header)
    if header[:2] != [SGRNA_COL, GENE_COL]:
        raise ConsistencyError(
            f"Matrix header starts with {header[:2]}, expected {[SGRNA_COL, GENE_COL]}"
        )
    observed = header[2:]
    if len(observed) != len(set(observed)) or set(observed) != set(expected_samples):
        raise ConsistencyError(
            f"Merged matrix header mismatch: expected samples "
            f"{sorted(expected_samples)}, observed {observed}"
        )
