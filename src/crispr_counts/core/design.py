"""
Control vs. treatment design tables, one per non-control condition.
"""

from typing import List, Sequence

from ..models.records import ContrastDesign, SampleSheet


def contrast_design(
    sheet: SampleSheet,
    condition: str,
    namespace: str,
    control_condition: str = "control",
) -> ContrastDesign:
    """
    Build the design for `condition` against the control samples.

    Samples under any other condition are left out. Sample order follows the
    sheet within each group.
    """
    if condition == control_condition:
        raise ValueError(f"'{condition}' is the control condition")
    return ContrastDesign(
        namespace=namespace,
        condition=condition,
        control_condition=control_condition,
        control_samples=[s.name for s in sheet if s.is_control(control_condition)],
        treatment_samples=[s.name for s in sheet if s.condition == condition],
    )


def contrast_designs(
    sheet: SampleSheet,
    namespaces: Sequence[str],
    control_condition: str = "control",
) -> List[ContrastDesign]:
    """All (namespace, non-control condition) designs."""
    return [
        contrast_design(sheet, condition, namespace, control_condition)
        for namespace in namespaces
        for condition in sheet.treatment_conditions(control_condition)
    ]
