"""
Dispatch of MAGeCK runs, one per (namespace, contrast).
"""

import logging
from pathlib import Path
from typing import List, Sequence, Union

from ..core.checkpoint import contrast_scope
from ..core.steps import StepRunner, ToolResult
from ..core.tools import ToolRunner
from ..models.records import AnalysisMode, ContrastDesign
from .aggregation import matrix_file
from .io import read_design

logger = logging.getLogger(__name__)


def design_file(matrix_dir: Union[Path, str], design: ContrastDesign) -> Path:
    return Path(matrix_dir) / f"{design.file_stem}.txt"


def run_contrast(
    tools: ToolRunner,
    mode: AnalysisMode,
    count_file: Path,
    design_path: Path,
    out_dir: Path,
    prefix: str,
) -> ToolResult:
    if AnalysisMode(mode) is AnalysisMode.test:
        controls, treatments = read_design(design_path)
        return tools.mageck_test(
            count_table=count_file,
            treatment_ids=treatments,
            control_ids=controls,
            out_dir=out_dir,
            prefix=prefix,
        )
    return tools.mageck_mle(
        count_table=count_file,
        design_matrix=design_path,
        out_dir=out_dir,
        prefix=prefix,
    )


def dispatch_analyses(
    runner: StepRunner,
    tools: ToolRunner,
    designs: Sequence[ContrastDesign],
    mode: AnalysisMode,
    matrix_dir: Union[Path, str],
    out_dir: Union[Path, str],
) -> List[str]:
    """
    Run MAGeCK for every design whose inputs exist.

    A contrast whose matrix or design file is missing is skipped with a
    warning; a failing MAGeCK run raises StepFailedError.

    Returns
    -------
    list
        Scope names of the contrasts that were skipped for missing input.
    """
    mode = AnalysisMode(mode)
    out_dir = Path(out_dir)
    skipped = []
    for design in designs:
        scope = contrast_scope(
            mode.value, design.condition, design.control_condition, design.namespace
        )
        count_file = matrix_file(matrix_dir, design.namespace)
        design_path = design_file(matrix_dir, design)
        missing = [p for p in (count_file, design_path) if not p.is_file()]
        if missing:
            logger.warning(
                f"Skipping {scope}: input not found "
                f"({', '.join(str(p) for p in missing)})"
            )
            skipped.append(scope)
            continue
        prefix = design.file_stem
        runner.run_step(
            scope,
            [out_dir / f"{prefix}.gene_summary.txt"],
            lambda c=count_file, d=design_path, p=prefix: run_contrast(
                tools, mode, c, d, out_dir, p
            ),
        )
    return skipped


def suggested_commands(
    designs: Sequence[ContrastDesign],
    matrix_dir: Union[Path, str],
    out_dir: Union[Path, str],
) -> List[str]:
    """MAGeCK command lines an operator can run by hand."""
    commands = []
    for design in designs:
        count_file = matrix_file(matrix_dir, design.namespace)
        design_path = design_file(matrix_dir, design)
        prefix = Path(out_dir) / design.file_stem
        controls = ",".join(design.control_samples)
        treatments = ",".join(design.treatment_samples)
        commands.append(
            f"mageck test -k {count_file} -t {treatments} -c {controls} -n {prefix}"
        )
        commands.append(f"mageck mle -k {count_file} -d {design_path} -n {prefix}")
    return commands
