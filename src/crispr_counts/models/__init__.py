"""
Data models for the counting pipeline.

This includes:
- Sample / SampleSheet: parsed sample sheet rows in sheet order
- ReferenceNamespace / GuideRecord: reference indices and their guides
- CountTable / CountMatrix: per-sample counts and the aggregated matrix
- ContrastDesign: control vs. treatment design for one condition
"""

from .records import (
    AnalysisMode,
    ContrastDesign,
    CountMatrix,
    CountTable,
    GeneCoverage,
    GuideRecord,
    ReferenceNamespace,
    Sample,
    SampleSheet,
)

__all__ = [
    "AnalysisMode",
    "ContrastDesign",
    "CountMatrix",
    "CountTable",
    "GeneCoverage",
    "GuideRecord",
    "ReferenceNamespace",
    "Sample",
    "SampleSheet",
]
