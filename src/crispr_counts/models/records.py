"""
Typed records shared by the counting, aggregation and design stages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd
from pandas import DataFrame


SGRNA_COL = "sgRNA"
GENE_COL = "Gene"
KEY_COLUMNS = [SGRNA_COL, GENE_COL]
DESIGN_COLUMNS = ["sample", "control", "treatment"]
SAMPLE_SHEET_COLUMNS = ["sample", "fastq_1", "fastq_2", "condition"]
MERGED_NAMESPACE = "merged"


class AnalysisMode(str, Enum):
    """MAGeCK sub-command used for differential testing."""

    test = "test"
    mle = "mle"


@dataclass(frozen=True)
class Sample:
    name: str
    fastq_1: Path
    fastq_2: Path
    condition: str

    def is_control(self, control_condition: str = "control") -> bool:
        return self.condition == control_condition


@dataclass(frozen=True)
class SampleSheet:
    """Samples in sheet order; the order drives matrix columns."""

    samples: Tuple[Sample, ...]
    path: Optional[Path] = None

    def __iter__(self):
        return iter(self.samples)

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def names(self) -> List[str]:
        return [sample.name for sample in self.samples]

    @property
    def conditions(self) -> List[str]:
        """Distinct conditions in order of first appearance."""
        seen = []
        for sample in self.samples:
            if sample.condition not in seen:
                seen.append(sample.condition)
        return seen

    def treatment_conditions(self, control_condition: str = "control") -> List[str]:
        return [c for c in self.conditions if c != control_condition]


@dataclass(frozen=True)
class ReferenceNamespace:
    """
    A named bowtie2 index together with its guide library.

    `index_prefix` is the bowtie2 basename (``<index_dir>/<index>``) and
    `library_file` maps aligned reference names to sgRNA / Gene.
    """

    name: str
    index_prefix: Path
    library_file: Path

    def index_exists(self) -> bool:
        return any(
            Path(f"{self.index_prefix}{suffix}").is_file()
            for suffix in (".1.bt2", ".1.bt2l")
        )


@dataclass(frozen=True)
class GuideRecord:
    reference: str
    sgrna: str
    gene: str
    namespace: str


@dataclass
class CountTable:
    """
    Per (sample, namespace) guide counts.

    `frame` always has the columns sgRNA, Gene and one integer column named
    after the sample.
    """

    sample: str
    namespace: str
    frame: DataFrame
    kind: str = "top90"

    def __post_init__(self):
        missing = [
            c for c in KEY_COLUMNS + [self.sample] if c not in self.frame.columns
        ]
        if missing:
            raise ValueError(
                f"Count table for sample '{self.sample}' is missing columns {missing}"
            )

    def __len__(self) -> int:
        return len(self.frame)

    @property
    def counts(self) -> Dict[Tuple[str, str], int]:
        keys = zip(self.frame[SGRNA_COL], self.frame[GENE_COL])
        return dict(zip(keys, self.frame[self.sample].astype(int)))

    def nonzero(self) -> DataFrame:
        return self.frame[self.frame[self.sample] > 0]


@dataclass
class GeneCoverage:
    """Guides-detected-per-gene diagnostic for one count table."""

    guides_per_gene: Dict[int, int]
    sequenced_genes: int
    designed_genes: int

    def to_frame(self) -> DataFrame:
        rows = [
            {"Number_of_sgRNAs_per_gene": k, "Number_of_genes": v}
            for k, v in sorted(self.guides_per_gene.items())
        ]
        return pd.DataFrame(rows, columns=["Number_of_sgRNAs_per_gene", "Number_of_genes"])


@dataclass
class CountMatrix:
    namespace: str
    frame: DataFrame
    samples: List[str] = field(default_factory=list)

    def __post_init__(self):
        expected = KEY_COLUMNS + list(self.samples)
        if list(self.frame.columns) != expected:
            raise ValueError(
                f"Matrix columns {list(self.frame.columns)} do not match {expected}"
            )

    @property
    def shape(self) -> Tuple[int, int]:
        return self.frame.shape

    @property
    def keys(self) -> List[Tuple[str, str]]:
        return list(zip(self.frame[SGRNA_COL], self.frame[GENE_COL]))


@dataclass
class ContrastDesign:
    namespace: str
    condition: str
    control_condition: str
    control_samples: List[str]
    treatment_samples: List[str]

    @property
    def name(self) -> str:
        return f"{self.condition}_vs_{self.control_condition}"

    @property
    def file_stem(self) -> str:
        return f"{self.name}_{self.namespace}"

    def to_frame(self) -> DataFrame:
        rows = [(s, 1, 0) for s in self.control_samples]
        rows += [(s, 0, 1) for s in self.treatment_samples]
        return pd.DataFrame(rows, columns=DESIGN_COLUMNS)
