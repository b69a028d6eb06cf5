"""
Orchestrator - Startup Pipeline.

============================================================
RESPONSIBILITY
============================================================
Runs startup stages with strict ordering and failure handling.

- Execute stages in order
- Short-circuit on the first failure
- Track execution timing
- Classify errors (recoverable vs non-recoverable)

Handlers raise; the executor turns every exception into a
StageResult so nothing escapes to the supervising process.

============================================================
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .models import StartStage, StageResult, StartResult, new_run_id
from core.exceptions import (
    ServiceError,
    PipelineError,
    classify_exception,
    wrap_exception,
)


# ============================================================
# STAGE HANDLER TYPE
# ============================================================

StageHandler = Callable[[], Awaitable[Dict[str, Any]]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================
# STAGE EXECUTOR
# ============================================================

class StageExecutor:
    """
    Executes a single stage with timing and error handling.
    """

    def __init__(
        self,
        stage: StartStage,
        handler: StageHandler,
        timeout_seconds: Optional[float] = None,
    ):
        """
        Initialize stage executor.

        Args:
            stage: The stage to execute
            handler: Async function to execute
            timeout_seconds: Optional execution timeout. Stages that wait
                on an external tool have none by default.
        """
        self.stage = stage
        self.handler = handler
        self.timeout_seconds = timeout_seconds
        self._logger = logging.getLogger(__name__)

    def _result(self, started_at: datetime, success: bool, **kwargs) -> StageResult:
        completed_at = _now()
        return StageResult(
            stage=self.stage,
            success=success,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
            **kwargs,
        )

    async def execute(self) -> StageResult:
        """
        Execute the stage.

        Returns:
            StageResult with execution details
        """
        started_at = _now()

        self._logger.info(
            f"Stage [{self.stage.order:02d}] START: {self.stage.description}"
        )

        try:
            if self.timeout_seconds is not None:
                context = await asyncio.wait_for(self.handler(), timeout=self.timeout_seconds)
            else:
                context = await self.handler()

            result = self._result(started_at, True, context=context or {})
            self._logger.info(
                f"Stage [{self.stage.order:02d}] COMPLETE: {self.stage.description} "
                f"({result.duration_seconds:.2f}s)"
            )
            return result

        except asyncio.TimeoutError:
            self._logger.error(
                f"Stage [{self.stage.order:02d}] TIMEOUT: {self.stage.description} "
                f"(>{self.timeout_seconds}s)"
            )
            return self._result(
                started_at,
                False,
                error=f"Stage timeout after {self.timeout_seconds}s",
                error_type="TimeoutError",
                recoverable=True,
            )

        except ServiceError as e:
            log = self._logger.error if self.stage.critical or e.is_fatal else self._logger.warning
            log(
                f"Stage [{self.stage.order:02d}] FAILED: {self.stage.description} "
                f"- {e.message}"
            )
            return self._result(
                started_at,
                False,
                error=e.message,
                error_type=type(e).__name__,
                recoverable=e.is_recoverable,
                context=e.context,
            )

        except Exception as e:
            error = wrap_exception(
                e,
                PipelineError,
                message=str(e),
                stage=self.stage.stage_id,
                classification=classify_exception(e),
            )

            self._logger.error(
                f"Stage [{self.stage.order:02d}] ERROR: {self.stage.description} "
                f"- {type(e).__name__}: {e}",
                exc_info=True,
            )
            return self._result(
                started_at,
                False,
                error=error.message,
                error_type=type(e).__name__,
                recoverable=not error.is_fatal,
                context=error.context,
            )


# ============================================================
# STARTUP PIPELINE
# ============================================================

class StartupPipeline:
    """
    Runs startup stages in strict order.

    Any failed stage stops the run. Whether the start as a whole
    failed depends on the stage being critical.
    """

    def __init__(
        self,
        stages: List[StartStage],
        handlers: Dict[StartStage, StageHandler],
    ):
        self._stages = stages
        self._handlers = handlers
        self._logger = logging.getLogger(__name__)

    @property
    def stages(self) -> List[StartStage]:
        return self._stages

    async def execute(self, result: Optional[StartResult] = None) -> StartResult:
        """
        Execute all stages.

        Args:
            result: Pre-created result to fill (so handlers can attach reports)

        Returns:
            StartResult with all stage results
        """
        if result is None:
            result = StartResult(run_id=new_run_id(), started_at=_now())

        self._logger.info(
            f"=== START: {result.run_id} | stages={len(self._stages)} ==="
        )

        for stage in self._stages:
            handler = self._handlers.get(stage)
            if not handler:
                self._logger.debug(f"No handler for stage: {stage.stage_id}")
                continue

            stage_result = await StageExecutor(stage=stage, handler=handler).execute()
            result.add_stage_result(stage_result)

            if not stage_result.success:
                self._logger.log(
                    logging.ERROR if stage.critical else logging.WARNING,
                    f"=== START STOPPED: {result.run_id} | "
                    f"stage={stage.stage_id} | critical={stage.critical} ===",
                )
                break

        result.completed_at = _now()
        result.success = result.failed_stage is None

        if result.success:
            self._logger.info(
                f"=== START COMPLETE: {result.run_id} | "
                f"duration={result.duration_seconds:.2f}s | "
                f"stages_completed={result.stages_completed} ==="
            )
        return result


# ============================================================
# EXPORTS
# ============================================================

__all__ = [
    "StageHandler",
    "StageExecutor",
    "StartupPipeline",
]
