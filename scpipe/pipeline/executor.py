"""In-memory pipeline execution with dependency ordering.

Stages are plain Python callables. The executor checks an abort
callback at every stage boundary; a stage that has started always runs
to completion.
"""

from collections import deque
from typing import Any, Callable, Dict, List, Optional
import logging
import time

from ..errors import ConfigurationError
from .logger import PipelineLogger
from .stage import Stage

logger = logging.getLogger(__name__)


class InMemoryExecutor:
    """Runs registered stages in dependency order.

    Parameters
    ----------
    logger : PipelineLogger, optional
        Logger instance
    should_abort : Callable[[str], bool], optional
        Called with the next stage ID before it starts; returning True
        stops the run

    Attributes
    ----------
    completed_stages : List[str]
        Stage IDs that finished, in order
    skipped_stages : List[str]
        Optional stages that failed and were skipped
    timings : Dict[str, float]
        Wall-clock seconds per completed stage
    aborted_before : Optional[str]
        Stage ID at which the abort callback stopped the run

    Example
    -------
    >>> executor = InMemoryExecutor()
    >>> executor.register_stage("qc", run_qc)
    >>> executor.register_stage("normalize", run_norm, depends_on=["qc"])
    >>> results = executor.run(store=store)
    """

    def __init__(
        self,
        logger: Optional[PipelineLogger] = None,
        should_abort: Optional[Callable[[str], bool]] = None,
    ):
        self.logger = logger
        self.should_abort = should_abort
        self.stages: Dict[str, Stage] = {}
        self.completed_stages: List[str] = []
        self.skipped_stages: List[str] = []
        self.timings: Dict[str, float] = {}
        self.aborted_before: Optional[str] = None

    @property
    def aborted(self) -> bool:
        return self.aborted_before is not None

    def register(self, stage: Stage) -> None:
        """Register a :class:`Stage`."""
        if stage.stage_id in self.stages:
            raise ConfigurationError(f"Stage '{stage.stage_id}' registered twice")
        self.stages[stage.stage_id] = stage

    def register_stage(
        self,
        stage_id: str,
        func: Callable,
        depends_on: Optional[List[str]] = None,
        name: Optional[str] = None,
        optional: bool = False,
    ) -> None:
        """Register a stage function."""
        self.register(
            Stage(
                stage_id=stage_id,
                name=name or stage_id,
                func=func,
                depends_on=list(depends_on or []),
                optional=optional,
            )
        )

    def get_execution_order(self) -> List[str]:
        """Topological order (Kahn's algorithm), registration order among peers.

        Raises
        ------
        ConfigurationError
            On unknown dependencies or cycles
        """
        for stage_id, stage in self.stages.items():
            for dep in stage.depends_on:
                if dep not in self.stages:
                    raise ConfigurationError(
                        f"Stage '{stage_id}' depends on unknown stage '{dep}'"
                    )

        in_degree = {sid: len(stage.depends_on) for sid, stage in self.stages.items()}
        queue = deque([sid for sid, degree in in_degree.items() if degree == 0])
        order = []
        while queue:
            stage_id = queue.popleft()
            order.append(stage_id)
            for other_id, other in self.stages.items():
                if stage_id in other.depends_on:
                    in_degree[other_id] -= 1
                    if in_degree[other_id] == 0:
                        queue.append(other_id)

        if len(order) != len(self.stages):
            raise ConfigurationError("Circular dependency detected between stages")
        return order

    def _plan(self, end_stage: Optional[str]) -> List[str]:
        order = self.get_execution_order()
        if end_stage is None:
            return order
        if end_stage not in self.stages:
            raise ConfigurationError(f"End stage '{end_stage}' not found")

        needed = set()
        pending = [end_stage]
        while pending:
            sid = pending.pop()
            if sid not in needed:
                needed.add(sid)
                pending.extend(self.stages[sid].depends_on)
        return [sid for sid in order if sid in needed]

    def run(self, end_stage: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        """Execute the registered stages.

        Parameters
        ----------
        end_stage : str, optional
            Stop after this stage (only it and its dependencies run)
        **kwargs
            Passed to every stage function alongside ``stage_results``

        Returns
        -------
        Dict[str, Any]
            Map of stage_id to stage result for the stages that ran
        """
        order = self._plan(end_stage)
        results: Dict[str, Any] = {}
        if self.logger:
            self.logger.log_info("Execution plan: " + " -> ".join(order))

        for stage_id in order:
            stage = self.stages[stage_id]
            if self.should_abort is not None and self.should_abort(stage_id):
                self.aborted_before = stage_id
                if self.logger:
                    self.logger.log_warning(f"Run aborted before stage {stage_id}")
                break

            missing = [d for d in stage.depends_on if d not in results]
            if missing:
                self.skipped_stages.append(stage_id)
                if self.logger:
                    self.logger.log_stage_skipped(stage_id, f"dependencies skipped: {missing}")
                else:
                    logger.warning("Stage %s skipped: dependencies skipped: %s", stage_id, missing)
                continue

            if self.logger:
                self.logger.log_stage_start(stage_id, stage.name)
            start_time = time.time()
            try:
                results[stage_id] = stage.func(stage_results=results, **kwargs)
            except Exception as e:
                if self.logger:
                    self.logger.log_stage_error(stage_id, str(e))
                if not stage.optional:
                    raise
                if self.logger is None:
                    logger.warning(
                        "Optional stage %s failed and was skipped: %s", stage_id, e, exc_info=True
                    )
                self.skipped_stages.append(stage_id)
                continue

            duration = time.time() - start_time
            self.timings[stage_id] = duration
            self.completed_stages.append(stage_id)
            if self.logger:
                self.logger.log_stage_complete(stage_id, duration)

        return results
