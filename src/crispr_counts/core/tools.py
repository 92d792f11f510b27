"""
Wrappers around the external command line tools.

Each wrapper builds the command line, runs it with stdout/stderr sent to a
per-step log file and returns a `ToolResult`. A non-zero exit is reported in
the result, never raised; the StepRunner decides what a failure means.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..config import Settings
from .steps import ToolResult

logger = logging.getLogger(__name__)


class ToolRunner:
    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings if settings is not None else Settings()

    def execute(
        self,
        command: List[str],
        log_file: Optional[Path] = None,
        cwd: Optional[Path] = None,
    ) -> ToolResult:
        command = [str(c) for c in command]
        logger.info(" ".join(command))
        if log_file is not None:
            log_file = Path(log_file)
            log_file.parent.mkdir(parents=True, exist_ok=True)
            with log_file.open("w") as handle:
                try:
                    proc = subprocess.run(
                        command, stdout=handle, stderr=subprocess.STDOUT, cwd=cwd
                    )
                except FileNotFoundError:
                    handle.write(f"command not found: {command[0]}\n")
                    return ToolResult(command, 127, log_file)
        else:
            try:
                proc = subprocess.run(command, capture_output=True, text=True, cwd=cwd)
            except FileNotFoundError:
                logger.error(f"command not found: {command[0]}")
                return ToolResult(command, 127, None)
        return ToolResult(command, proc.returncode, log_file)

    def trim(
        self,
        read_1: Path,
        read_2: Path,
        clean_1: Path,
        unpaired_1: Path,
        clean_2: Path,
        unpaired_2: Path,
        crop_length: int,
        log_file: Path,
    ) -> ToolResult:
        s = self.settings
        command = [
            "trimmomatic",
            "PE",
            "-threads",
            s.threads,
            read_1,
            read_2,
            clean_1,
            unpaired_1,
            clean_2,
            unpaired_2,
            f"LEADING:{s.trim_leading}",
            f"TRAILING:{s.trim_trailing}",
            f"SLIDINGWINDOW:{s.trim_sliding_window}",
            f"MINLEN:{s.trim_min_length}",
            f"CROP:{crop_length}",
        ]
        return self.execute(command, log_file)

    def merge_pairs(
        self, clean_1: Path, clean_2: Path, out_prefix: str, work_dir: Path, log_file: Path
    ) -> ToolResult:
        """Overlap-merge read pairs with FLASH, writing <out_prefix>.extendedFrags.fastq.gz."""
        command = [
            "flash",
            "-z",
            "-O",
            "-M",
            self.settings.flash_max_overlap,
            Path(clean_1).name,
            Path(clean_2).name,
            "-o",
            out_prefix,
        ]
        return self.execute(command, log_file, cwd=work_dir)

    def strip_adapters(
        self, merged: Path, output: Path, work_dir: Path, log_file: Path
    ) -> ToolResult:
        s = self.settings
        command = ["cutadapt"]
        for adapter in s.adapters:
            command.extend(["-g", adapter])
        command.extend(
            [
                "--length",
                s.guide_length,
                "--discard-untrimmed",
                "-m",
                s.guide_length,
                f"--cores={s.threads}",
                "-o",
                Path(output).name,
                Path(merged).name,
            ]
        )
        return self.execute(command, log_file, cwd=work_dir)

    def align(
        self, reads: Path, index_prefix: Path, sam_file: Path, log_file: Path
    ) -> ToolResult:
        command = [
            "bowtie2",
            "--no-unal",
            "--no-head",
            "-p",
            self.settings.threads,
            "-x",
            index_prefix,
            "-U",
            reads,
            "-S",
            sam_file,
        ]
        return self.execute(command, log_file)

    def mageck_test(
        self,
        count_table: Union[Path, str],
        treatment_ids: Sequence[str],
        control_ids: Sequence[str],
        out_dir: Union[Path, str],
        prefix: str,
        control_sgrnas: Optional[Union[Path, str]] = None,
        norm_method: Optional[str] = None,
        paired: bool = False,
        pdf_report: Optional[bool] = None,
        other_parameter: Sequence[str] = (),
    ) -> ToolResult:
        Path(out_dir).mkdir(parents=True, exist_ok=True)
        if pdf_report is None:
            pdf_report = self.settings.pdf_report

        command = [
            "mageck",
            "test",
            "-k",
            count_table,
            "-t",
            ",".join(treatment_ids),
            "-c",
            ",".join(control_ids),
            "-n",
            f"{out_dir}/{prefix}",
        ]
        if control_sgrnas is not None:
            command.extend(["--control-sgrna", str(control_sgrnas)])
        if norm_method is not None:
            command.extend(["--norm-method", str(norm_method)])
        if paired:
            command.append("--paired")
        if pdf_report:
            command.append("--pdf-report")
        command.extend(other_parameter)

        result = self.execute(command, Path(out_dir) / f"{prefix}.mageck.log")
        if result.ok:
            copy_summaries(out_dir, prefix)
        return result

    def mageck_mle(
        self,
        count_table: Union[Path, str],
        design_matrix: Union[Path, str],
        out_dir: Union[Path, str],
        prefix: str,
        control_sgrnas: Optional[Union[Path, str]] = None,
        norm_method: Optional[str] = None,
        other_parameter: Sequence[str] = (),
    ) -> ToolResult:
        Path(out_dir).mkdir(parents=True, exist_ok=True)

        command = [
            "mageck",
            "mle",
            "-k",
            count_table,
            "-d",
            design_matrix,
            "-n",
            f"{out_dir}/{prefix}",
        ]
        if control_sgrnas is not None:
            command.extend(["--control-sgrna", str(control_sgrnas)])
        if norm_method is not None:
            command.extend(["--norm-method", str(norm_method)])
        command.extend(other_parameter)

        result = self.execute(command, Path(out_dir) / f"{prefix}.mageck.log")
        if result.ok:
            copy_summaries(out_dir, prefix)
        return result


def copy_summaries(out_dir: Union[Path, str], prefix: str) -> None:
    """Copy MAGeCK *_summary.txt outputs to .tsv siblings."""
    for summary in ("gene_summary", "sgrna_summary"):
        txt = Path(f"{out_dir}/{prefix}.{summary}.txt")
        tsv = Path(f"{out_dir}/{prefix}.{summary}.tsv")
        if txt.is_file():
            shutil.copy(txt, tsv)
