"""
Tests for core/tools.py module.

External programs are never executed; subprocess.run is mocked and the
tests check the assembled command lines.
"""

import pytest
from pathlib import Path
from unittest.mock import MagicMock, patch
from crispr_counts.config import Settings
from crispr_counts.core.tools import ToolRunner, copy_summaries


@pytest.fixture
def tools(tmp_path):
    return ToolRunner(Settings(base_dir=tmp_path, threads=4))


def completed(returncode=0):
    proc = MagicMock()
    proc.returncode = returncode
    return proc


class TestExecute:
    @patch("crispr_counts.core.tools.subprocess.run")
    def test_output_goes_to_log(self, mock_run, tools, tmp_path):
        mock_run.return_value = completed(0)
        log_file = tmp_path / "logs" / "step.log"
        result = tools.execute(["echo", 1], log_file)
        assert result.ok
        assert result.command == ["echo", "1"]
        assert result.log_file == log_file
        assert log_file.exists()
        assert mock_run.call_args.kwargs["stdout"] is not None

    @patch("crispr_counts.core.tools.subprocess.run")
    def test_nonzero_exit_is_returned(self, mock_run, tools, tmp_path):
        mock_run.return_value = completed(3)
        result = tools.execute(["false"], tmp_path / "x.log")
        assert not result.ok
        assert result.returncode == 3

    @patch("crispr_counts.core.tools.subprocess.run", side_effect=FileNotFoundError)
    def test_missing_program(self, mock_run, tools, tmp_path):
        log_file = tmp_path / "x.log"
        result = tools.execute(["no-such-tool"], log_file)
        assert result.returncode == 127
        assert "no-such-tool" in log_file.read_text()

    @patch("crispr_counts.core.tools.subprocess.run", side_effect=FileNotFoundError)
    def test_missing_program_without_log(self, mock_run, tools):
        assert tools.execute(["no-such-tool"]).returncode == 127


class TestCommandLines:
    """The wrappers pass the fixed pipeline parameters."""

    @patch("crispr_counts.core.tools.subprocess.run")
    def test_trim(self, mock_run, tools, tmp_path):
        mock_run.return_value = completed()
        p = [tmp_path / n for n in ("r1", "r2", "c1", "u1", "c2", "u2")]
        tools.trim(*p, crop_length=150, log_file=tmp_path / "trim.log")
        cmd = mock_run.call_args.args[0]
        assert cmd[:4] == ["trimmomatic", "PE", "-threads", "4"]
        assert cmd[4:10] == [str(x) for x in p]
        assert cmd[10:] == [
            "LEADING:3",
            "TRAILING:3",
            "SLIDINGWINDOW:4:15",
            "MINLEN:50",
            "CROP:150",
        ]

    @patch("crispr_counts.core.tools.subprocess.run")
    def test_merge_pairs_runs_in_work_dir(self, mock_run, tools, tmp_path):
        mock_run.return_value = completed()
        tools.merge_pairs(
            tmp_path / "s1_clean_R1.fq.gz",
            tmp_path / "s1_clean_R2.fq.gz",
            "s1",
            tmp_path,
            tmp_path / "flash.log",
        )
        cmd = mock_run.call_args.args[0]
        assert cmd == [
            "flash", "-z", "-O", "-M", "149",
            "s1_clean_R1.fq.gz", "s1_clean_R2.fq.gz", "-o", "s1",
        ]
        assert mock_run.call_args.kwargs["cwd"] == tmp_path

    @patch("crispr_counts.core.tools.subprocess.run")
    def test_strip_adapters(self, mock_run, tools, tmp_path):
        mock_run.return_value = completed()
        tools.strip_adapters(
            tmp_path / "s1.extendedFrags.fastq.gz",
            tmp_path / "s1.extendedFrags.cutadapt.fastq.gz",
            tmp_path,
            tmp_path / "cutadapt.log",
        )
        cmd = mock_run.call_args.args[0]
        assert cmd[:5] == ["cutadapt", "-g", "TAGCTCTAAAAC", "-g", "GCTCTACAAGTG"]
        assert "--discard-untrimmed" in cmd
        assert cmd[cmd.index("--length") + 1] == "20"
        assert cmd[cmd.index("-m") + 1] == "20"
        assert cmd[-3:] == [
            "-o",
            "s1.extendedFrags.cutadapt.fastq.gz",
            "s1.extendedFrags.fastq.gz",
        ]

    @patch("crispr_counts.core.tools.subprocess.run")
    def test_align(self, mock_run, tools, tmp_path):
        mock_run.return_value = completed()
        tools.align(tmp_path / "reads.fq.gz", tmp_path / "idx", tmp_path / "a.sam",
                    tmp_path / "bt2.log")
        cmd = mock_run.call_args.args[0]
        assert cmd[:5] == ["bowtie2", "--no-unal", "--no-head", "-p", "4"]
        assert cmd[cmd.index("-x") + 1] == str(tmp_path / "idx")
        assert cmd[cmd.index("-S") + 1] == str(tmp_path / "a.sam")


class TestMageck:
    @patch("crispr_counts.core.tools.subprocess.run")
    def test_mageck_test(self, mock_run, tools, tmp_path):
        mock_run.return_value = completed()
        out_dir = tmp_path / "out"
        tools.mageck_test(
            "counts.txt", ["t1", "t2"], ["c1"], out_dir, "drug_vs_control_gene",
            norm_method="median", paired=True,
        )
        cmd = mock_run.call_args.args[0]
        assert cmd[:4] == ["mageck", "test", "-k", "counts.txt"]
        assert cmd[cmd.index("-t") + 1] == "t1,t2"
        assert cmd[cmd.index("-c") + 1] == "c1"
        assert cmd[cmd.index("-n") + 1] == f"{out_dir}/drug_vs_control_gene"
        assert cmd[cmd.index("--norm-method") + 1] == "median"
        assert "--paired" in cmd
        assert "--pdf-report" in cmd
        assert (out_dir / "drug_vs_control_gene.mageck.log").exists()

    @patch("crispr_counts.core.tools.subprocess.run")
    def test_mageck_test_without_report(self, mock_run, tools, tmp_path):
        mock_run.return_value = completed()
        tools.mageck_test("c.txt", ["t"], ["c"], tmp_path, "p", pdf_report=False)
        assert "--pdf-report" not in mock_run.call_args.args[0]

    @patch("crispr_counts.core.tools.subprocess.run")
    def test_mageck_mle(self, mock_run, tools, tmp_path):
        mock_run.return_value = completed()
        tools.mageck_mle("counts.txt", "design.txt", tmp_path, "p",
                         control_sgrnas="ctrl.txt")
        cmd = mock_run.call_args.args[0]
        assert cmd[:6] == ["mageck", "mle", "-k", "counts.txt", "-d", "design.txt"]
        assert cmd[cmd.index("--control-sgrna") + 1] == "ctrl.txt"

    @patch("crispr_counts.core.tools.subprocess.run")
    def test_summaries_copied_on_success(self, mock_run, tools, tmp_path):
        def fake_run(command, **kwargs):
            prefix = command[command.index("-n") + 1]
            Path(f"{prefix}.gene_summary.txt").write_text("id\tnum\n")
            return completed(0)

        mock_run.side_effect = fake_run
        result = tools.mageck_mle("c.txt", "d.txt", tmp_path, "p")
        assert result.ok
        assert (tmp_path / "p.gene_summary.tsv").read_text() == "id\tnum\n"
        assert not (tmp_path / "p.sgrna_summary.tsv").exists()

    @patch("crispr_counts.core.tools.subprocess.run")
    def test_no_copy_on_failure(self, mock_run, tools, tmp_path):
        (tmp_path / "p.gene_summary.txt").write_text("old")
        mock_run.return_value = completed(1)
        assert not tools.mageck_mle("c.txt", "d.txt", tmp_path, "p").ok
        assert not (tmp_path / "p.gene_summary.tsv").exists()


def test_copy_summaries(tmp_path):
    (tmp_path / "x.sgrna_summary.txt").write_text("sgrna\n")
    copy_summaries(tmp_path, "x")
    assert (tmp_path / "x.sgrna_summary.tsv").read_text() == "sgrna\n"
