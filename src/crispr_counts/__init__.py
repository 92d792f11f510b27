"""
CRISPR screens – sgRNA counting and MAGeCK input preparation.

This package provides:
- core
- models
- services
- jobs
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("crispr-counts")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.1.0"


from .jobs.count_jobs import (
    sgrna_count_job,
    count_matrix_job,
    contrast_design_job,
    mageck_contrast_job,
)
from .services.pipeline import BatchPipeline, RunOptions

__all__ = [
    "sgrna_count_job",
    "count_matrix_job",
    "contrast_design_job",
    "mageck_contrast_job",
    "BatchPipeline",
    "RunOptions",
]
