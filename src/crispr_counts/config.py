from pathlib import Path
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    base_dir: Path = Path(".")
    index_dir: Optional[Path] = None

    gene_index: str = "20200725.gene.6.final"
    promoter_index: str = "20200726.Promoter.3.final"
    control_condition: str = "control"

    threads: int = 20
    trim_leading: int = 3
    trim_trailing: int = 3
    trim_sliding_window: str = "4:15"
    trim_min_length: int = 50
    flash_max_overlap: int = 149
    adapters: List[str] = ["TAGCTCTAAAAC", "GCTCTACAAGTG"]
    guide_length: int = 20
    gene_tag: str = "_BmEg"

    top_fraction: float = 0.9
    match_lengths: List[int] = [19, 20]
    pdf_report: bool = True

    class Config:
        env_prefix = "CRISPR_COUNTS_"
        env_file = ".env"

    @property
    def results_dir(self) -> Path:
        return self.base_dir / "results"

    @property
    def work_dir(self) -> Path:
        return self.base_dir / "work"

    @property
    def log_dir(self) -> Path:
        return self.base_dir / "logs"

    @property
    def batch_log_dir(self) -> Path:
        return self.log_dir / "batch_process"

    @property
    def checkpoint_dir(self) -> Path:
        return self.batch_log_dir / "checkpoints"

    @property
    def matrix_dir(self) -> Path:
        return self.results_dir / "mageck_input"

    @property
    def analysis_dir(self) -> Path:
        return self.results_dir / "mageck_output"

    @property
    def resolved_index_dir(self) -> Path:
        if self.index_dir is not None:
            return self.index_dir
        return self.base_dir / "data" / "index"


settings = Settings()
