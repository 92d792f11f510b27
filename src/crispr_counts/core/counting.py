"""
sgRNA counting for one sample against one reference namespace.

Turns aligned read records into a raw and a top-90% count table and a
gene coverage summary. All functions here are pure; reading and writing
files is done in `crispr_counts.services.io`.
"""

import math
import re
from collections import Counter
from typing import Iterable, Sequence, Tuple

import pandas as pd
from pandas import DataFrame

from ..models.records import GENE_COL, KEY_COLUMNS, SGRNA_COL, CountTable, GeneCoverage

DEFAULT_MATCH_LENGTHS = (19, 20)
DEFAULT_TOP_FRACTION = 0.9


def match_pattern(match_lengths: Sequence[int] = DEFAULT_MATCH_LENGTHS) -> re.Pattern:
    """Regex accepting a CIGAR string with a full-length M operation."""
    lengths = "|".join(str(n) for n in match_lengths)
    return re.compile(rf"(?<!\d)(?:{lengths})M")


def passes_match_gate(cigar: str, pattern: re.Pattern) -> bool:
    return bool(pattern.search(cigar))


def count_guides(
    records: Iterable[Tuple[str, str]],
    match_lengths: Sequence[int] = DEFAULT_MATCH_LENGTHS,
) -> DataFrame:
    """
    Count aligned reads per reference name.

    Parameters
    ----------
    records : iterable of (reference, cigar)
        Aligned read records; unmapped records (reference "*") are ignored.
    match_lengths : sequence of int
        Match operation lengths that pass the quality gate.

    Returns
    -------
    DataFrame
        Columns ``reference`` and ``count``, sorted by count descending and
        reference ascending for ties.
    """
    pattern = match_pattern(match_lengths)
    counter = Counter(
        reference
        for reference, cigar in records
        if reference != "*" and passes_match_gate(cigar, pattern)
    )
    ranked = pd.DataFrame(
        list(counter.items()), columns=["reference", "count"]
    ).astype({"reference": str, "count": "int64"})
    return rank_guides(ranked)


def rank_guides(ranked: DataFrame) -> DataFrame:
    return ranked.sort_values(
        ["count", "reference"], ascending=[False, True], kind="mergesort"
    ).reset_index(drop=True)


def top_fraction_cutoff(n_guides: int, fraction: float = DEFAULT_TOP_FRACTION) -> int:
    """Number of distinct guides kept: floor(fraction * n_guides)."""
    if n_guides < 0:
        raise ValueError("n_guides must be non-negative")
    # round() first so that 0.9 * 10 does not floor to 8
    return int(math.floor(round(fraction * n_guides, 9)))


def select_top_guides(
    ranked: DataFrame, fraction: float = DEFAULT_TOP_FRACTION
) -> DataFrame:
    """
    Keep the best ranked guides.

    The cutoff is taken over distinct guides with at least one hit, not over
    read mass: the least frequent ``1 - fraction`` of guide keys is dropped.
    """
    detected = ranked[ranked["count"] > 0]
    return detected.head(top_fraction_cutoff(len(detected), fraction)).copy()


def join_library(
    ranked: DataFrame,
    library: DataFrame,
    sample: str,
    zero_fill: bool = False,
) -> DataFrame:
    """
    Attach sgRNA / Gene to ranked reference counts.

    References missing from the library are dropped. Several references can
    resolve to the same (sgRNA, Gene) key; their counts are summed.

    Parameters
    ----------
    ranked : DataFrame
        Output of `count_guides` (reference, count).
    library : DataFrame
        Guide library with columns reference, sgRNA, Gene.
    sample : str
        Name of the count column in the result.
    zero_fill : bool
        If True, every library key is reported, with 0 when undetected.

    Returns
    -------
    DataFrame
        Columns sgRNA, Gene, <sample>, sorted by sgRNA then Gene.
    """
    how = "left" if zero_fill else "inner"
    joined = library[["reference", SGRNA_COL, GENE_COL]].merge(
        ranked, on="reference", how=how
    )
    joined["count"] = joined["count"].fillna(0).astype("int64")
    table = (
        joined.groupby([SGRNA_COL, GENE_COL], sort=True, as_index=False)["count"]
        .sum()
        .rename(columns={"count": sample})
    )
    return table.reset_index(drop=True)


def gene_coverage(raw: DataFrame, sample: str) -> GeneCoverage:
    """
    Summarise how many guides were detected per gene.

    `raw` must be the zero-filled raw table so the designed gene total
    includes genes without any detected guide.
    """
    detected = raw[raw[sample] > 0]
    per_gene = detected.groupby(GENE_COL)[SGRNA_COL].count()
    distribution = per_gene.value_counts().sort_index()
    return GeneCoverage(
        guides_per_gene={int(k): int(v) for k, v in distribution.items()},
        sequenced_genes=int(per_gene.shape[0]),
        designed_genes=int(raw[GENE_COL].nunique()),
    )


def extract_sample_counts(
    records: Iterable[Tuple[str, str]],
    library: DataFrame,
    sample: str,
    namespace: str,
    fraction: float = DEFAULT_TOP_FRACTION,
    match_lengths: Sequence[int] = DEFAULT_MATCH_LENGTHS,
) -> Tuple[CountTable, CountTable, GeneCoverage]:
    """
    Run the full counting algorithm for one sample and namespace.

    Returns
    -------
    tuple
        (raw, top90, coverage) where raw lists every library guide and top90
        only the guides that survived the abundance cutoff.
    """
    ranked = count_guides(records, match_lengths=match_lengths)
    top = select_top_guides(ranked, fraction=fraction)
    raw_frame = join_library(ranked, library, sample, zero_fill=True)
    # retained keys keep their full raw total, even if only some of the
    # references behind a key made the cutoff
    kept = join_library(top, library, sample)[KEY_COLUMNS]
    top_frame = raw_frame.merge(kept, on=KEY_COLUMNS, how="inner")
    raw = CountTable(sample=sample, namespace=namespace, frame=raw_frame, kind="raw")
    top90 = CountTable(
        sample=sample, namespace=namespace, frame=top_frame, kind="top90"
    )
    return raw, top90, gene_coverage(raw_frame, sample)
