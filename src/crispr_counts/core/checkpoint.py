"""
Durable record of completed pipeline steps.

Each completed scope is a ``<scope>.done`` marker file inside the store
directory. Scope names are built with the helpers below so that the
granularity of a checkpoint matches the unit of recoverable work.
"""

import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Union

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^\w.\-]+")


def sample_scope(step: str, sample: str) -> str:
    return f"{step}_{sample}"


def namespace_scope(step: str, namespace: str) -> str:
    return f"{step}_{namespace}"


def contrast_scope(
    mode: str, condition: str, control_condition: str, namespace: str
) -> str:
    return f"mageck_{mode}_{condition}_vs_{control_condition}_{namespace}"


class CheckpointStore:
    """
    File-backed checkpoint store.

    Writes go through a temporary file and a rename, and are serialized by a
    lock, so a marker is either fully present or absent.
    """

    suffix = ".done"

    def __init__(self, directory: Union[Path, str]):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _marker(self, name: str) -> Path:
        safe = _UNSAFE.sub("_", name).strip("_")
        if not safe:
            raise ValueError(f"Invalid checkpoint name: {name!r}")
        return self.directory / f"{safe}{self.suffix}"

    def is_done(self, name: str) -> bool:
        return self._marker(name).is_file()

    def mark_done(self, name: str) -> None:
        marker = self._marker(name)
        tmp = marker.with_name(marker.name + ".tmp")
        with self._lock:
            tmp.write_text(datetime.now().isoformat() + "\n")
            tmp.replace(marker)
        logger.info(f"Checkpoint set: {name}")

    def clear(self, name: str) -> None:
        marker = self._marker(name)
        with self._lock:
            if marker.exists():
                marker.unlink()
                logger.info(f"Checkpoint cleared: {name}")

    def reset(self) -> None:
        """Drop every checkpoint in this store."""
        with self._lock:
            for marker in self.directory.glob(f"*{self.suffix}*"):
                marker.unlink()
        logger.info(f"Checkpoints reset in {self.directory}")

    def completed(self) -> List[str]:
        return sorted(
            p.name[: -len(self.suffix)] for p in self.directory.glob(f"*{self.suffix}")
        )
