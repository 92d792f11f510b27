"""
Idempotent step execution on top of a CheckpointStore.

Every unit of work in the pipeline goes through `StepRunner.run_step`: a
step is skipped only when its checkpoint is set *and* all of its required
outputs are on disk, otherwise it is (re-)executed and the checkpoint is
set on success only.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from .checkpoint import CheckpointStore
from .errors import CountPipelineError, StepFailedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one external tool invocation."""

    command: List[str]
    returncode: int
    log_file: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def program(self) -> str:
        return self.command[0] if self.command else "<none>"

    def describe(self) -> str:
        msg = f"{self.program} exited with code {self.returncode}"
        if self.log_file is not None:
            msg += f" (see {self.log_file})"
        return msg


def first_failure(results: Iterable[Optional[ToolResult]]) -> Optional[ToolResult]:
    for result in results:
        if isinstance(result, ToolResult) and not result.ok:
            return result
    return None


StepAction = Callable[[], Union[None, ToolResult, List[ToolResult]]]


class StepRunner:
    def __init__(self, store: CheckpointStore, label: str = ""):
        self.store = store
        self.label = label

    def _qualified(self, scope: str) -> str:
        return f"{self.label}:{scope}" if self.label else scope

    def missing_outputs(self, required_outputs: Iterable[Union[Path, str]]) -> List[Path]:
        return [Path(p) for p in required_outputs if not Path(p).exists()]

    def run_step(
        self,
        scope: str,
        required_outputs: Iterable[Union[Path, str]],
        action: StepAction,
    ) -> bool:
        """
        Run `action` unless `scope` is already complete.

        Returns True if the action ran, False if the step was skipped.
        Raises StepFailedError (with the checkpoint cleared) if the action
        raises or reports a failed ToolResult.
        """
        required_outputs = list(required_outputs)
        name = self._qualified(scope)
        if self.store.is_done(scope):
            missing = self.missing_outputs(required_outputs)
            if not missing:
                logger.info(f"Step '{name}' already completed, skipping")
                return False
            logger.warning(
                f"Step '{name}' is checkpointed but outputs are missing "
                f"({', '.join(str(m) for m in missing)}), re-running"
            )
        self.store.clear(scope)

        logger.info(f"Starting step '{name}'")
        try:
            result = action()
        except StepFailedError:
            # a nested step failed and already reported itself
            self.store.clear(scope)
            logger.error(f"Step '{name}' aborted by a failed sub-step")
            raise
        except CountPipelineError as exc:
            self._fail(scope, str(exc), exc)
        except Exception as exc:
            self._fail(scope, f"{type(exc).__name__}: {exc}", exc)

        results = result if isinstance(result, list) else [result]
        failed = first_failure(results)
        if failed is not None:
            self._fail(scope, failed.describe())

        missing = self.missing_outputs(required_outputs)
        if missing:
            self._fail(
                scope,
                "expected outputs were not produced: "
                + ", ".join(str(m) for m in missing),
            )

        self.store.mark_done(scope)
        logger.info(f"Finished step '{name}'")
        return True

    def _fail(self, scope: str, reason: str, cause: Optional[BaseException] = None):
        self.store.clear(scope)
        name = self._qualified(scope)
        logger.error(f"Step '{name}' failed: {reason}")
        logger.error("Fix the error and re-run the same command to resume")
        raise StepFailedError(name, reason) from cause
