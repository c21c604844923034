"""Pipeline execution engine with checkpoint support."""

import json
import subprocess
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..io.logging import log_json
from .config import PipelineConfig, topological_order
from .logger import PipelineLogger
from .stage import Stage


class PipelineExecutor:
    """Drives the preprocess, integrate and cluster stages in dependency order.

    Every stage module is launched in its own interpreter. Missing inputs
    abort the stage before launch, and missing outputs fail it afterwards.
    Finished stage ids are kept in ``state_file`` for ``--resume`` and each
    attempt is appended to ``stage_runs.jsonl`` under the log directory.

    Parameters
    ----------
    config : PipelineConfig
        Pipeline definition with stages already parsed
    logger : PipelineLogger
        Logger whose ``log_dir`` receives the run records
    state_file : str, optional
        Checkpoint path (default: .pipeline_state.json)

    Example
    -------
    >>> config = PipelineConfig("configs/pipeline.yaml")
    >>> config.load()
    >>> config.parse_stages()
    >>> logger = PipelineLogger("output/logs")
    >>> logger.setup()
    >>> executor = PipelineExecutor(config, logger, state_file="output/.state.json")
    >>> executor.run(start_stage="integrate")
    """

    def __init__(
        self,
        config: PipelineConfig,
        logger: PipelineLogger,
        state_file: Optional[str] = None,
    ):
        self.config = config
        self.logger = logger
        self.state_file = Path(state_file) if state_file else Path(".pipeline_state.json")
        self.completed_stages: List[str] = []

    def load_state(self) -> None:
        """Load completed stages from the checkpoint file, if any."""
        if not self.state_file.exists():
            self.logger.log_debug("No checkpoint file found, starting fresh")
            return

        try:
            with open(self.state_file, "r") as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.log_warning(f"Failed to load checkpoint: {e}")
            self.completed_stages = []
            return

        self.completed_stages = list(state.get("completed_stages", []))
        self.logger.log_info(
            f"Loaded checkpoint: {len(self.completed_stages)} stages completed"
        )
        if self.completed_stages:
            self.logger.log_info(f"Last completed: {self.completed_stages[-1]}")

    def save_state(self) -> None:
        """Write completed stages and metadata to the checkpoint file."""
        state = {
            "completed_stages": self.completed_stages,
            "timestamp": datetime.now().isoformat(),
            "pipeline_version": self.config.raw_config.get("pipeline", {}).get(
                "version", "1.0"
            ),
        }
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.state_file, "w") as f:
            json.dump(state, f, indent=2)

    def clear_state(self) -> None:
        """Remove the checkpoint file for a fresh run."""
        if self.state_file.exists():
            self.state_file.unlink()
            self.logger.log_info("Cleared checkpoint state")
        self.completed_stages = []

    def should_skip_stage(self, stage: Stage) -> bool:
        """Optional stages are skipped when their ``config`` arg file is missing."""
        if not stage.optional:
            return False

        config_arg = stage.args.get("config")
        if config_arg and not Path(config_arg).exists():
            self.logger.log_info(f"Stage {stage.stage_id} config not found - skipping")
            return True
        return False

    def record_run(self, stage: Stage, status: str, duration: float, exit_code: int) -> None:
        """Append one JSON line per executed stage to ``stage_runs.jsonl`` in the log directory."""
        log_json(
            self.logger.log_dir / "stage_runs.jsonl",
            {
                "stage": stage.stage_id,
                "status": status,
                "exit_code": exit_code,
                "duration_s": round(duration, 3),
                "outputs": dict(stage.outputs),
                "timestamp": datetime.now().isoformat(),
            },
        )

    def execute_stage(self, stage: Stage, dry_run: bool = False) -> int:
        """Execute a single pipeline stage.

        Returns
        -------
        int
            Exit code (0 = success, non-zero = failure)
        """
        if self.should_skip_stage(stage):
            self.logger.log_info(
                f"[SKIP] Stage {stage.stage_id} is optional and conditions not met"
            )
            self.completed_stages.append(stage.stage_id)
            self.save_state()
            return 0

        cmd = stage.get_command()
        if dry_run:
            self.logger.log_info(f"[DRY RUN] Would execute: {' '.join(cmd)}")
            return 0

        valid, errors = stage.validate_inputs()
        if not valid:
            self.logger.log_error(f"Input validation failed for stage {stage.stage_id}:")
            for error in errors:
                self.logger.log_error(f"  - {error}")
            return 1

        self.logger.log_stage_start(stage.stage_id, stage.name)
        start_time = time.time()

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            self.logger.log_stage_error(stage.stage_id, str(e))
            self.record_run(stage, "error", time.time() - start_time, 1)
            return 1

        duration = time.time() - start_time
        if result.returncode != 0:
            self.logger.log_stage_error(stage.stage_id, f"Exit code {result.returncode}")
            self.logger.log_error(f"STDERR: {result.stderr[-1000:]}")
            self.record_run(stage, "failed", duration, result.returncode)
            return result.returncode

        valid, errors = stage.validate_outputs()
        if not valid:
            self.logger.log_error(f"Output validation failed for stage {stage.stage_id}:")
            for error in errors:
                self.logger.log_error(f"  - {error}")
            self.record_run(stage, "missing_outputs", duration, 1)
            return 1

        self.logger.log_stage_complete(stage.stage_id, duration)
        self.record_run(stage, "completed", duration, 0)
        self.completed_stages.append(stage.stage_id)
        self.save_state()
        return 0

    def run(
        self,
        start_stage: Optional[str] = None,
        end_stage: Optional[str] = None,
        dry_run: bool = False,
        force: bool = False,
    ) -> int:
        """Execute pipeline from start_stage to end_stage.

        Parameters
        ----------
        start_stage : str, optional
            Stage ID to start from (default: first stage)
        end_stage : str, optional
            Stage ID to end at (default: last stage)
        dry_run : bool
            If True, show execution plan without running
        force : bool
            If True, ignore checkpoint and re-run all stages

        Returns
        -------
        int
            Exit code (0 = success, non-zero = failure)
        """
        order = self.config.get_execution_order()

        if start_stage:
            if start_stage not in order:
                self.logger.log_error(f"Start stage '{start_stage}' not found")
                return 1
            order = order[order.index(start_stage):]

        if end_stage:
            if end_stage not in order:
                self.logger.log_error(f"End stage '{end_stage}' not found")
                return 1
            order = order[: order.index(end_stage) + 1]

        if force:
            self.clear_state()
        else:
            self.load_state()

        self.logger.log_info(f"Pipeline execution plan: {' -> '.join(order)}")
        if dry_run:
            self.logger.log_info("DRY RUN MODE - No stages will be executed")

        for stage_id in order:
            if stage_id in self.completed_stages and not force:
                self.logger.log_info(f"[SKIP] Stage {stage_id} already completed")
                continue

            exit_code = self.execute_stage(self.config.stages[stage_id], dry_run)
            if exit_code != 0:
                self.logger.log_error(f"Pipeline failed at stage {stage_id}")
                return exit_code

        self.logger.log_info("Pipeline completed successfully")
        return 0

    def get_resume_stage(self) -> Optional[str]:
        """Next stage after the last checkpointed one, or None."""
        self.load_state()
        if not self.completed_stages:
            return None

        order = self.config.get_execution_order()
        last_completed = self.completed_stages[-1]
        if last_completed not in order:
            return None

        next_idx = order.index(last_completed) + 1
        return order[next_idx] if next_idx < len(order) else None


class InMemoryExecutor:
    """Runs registered stage functions in-process, in dependency order.

    Each stage function is called with the keyword arguments given to
    :meth:`run` plus ``stage_results``, the results of earlier stages.

    Parameters
    ----------
    logger : PipelineLogger, optional
        Logger instance

    Example
    -------
    >>> executor = InMemoryExecutor()
    >>> executor.register_stage("preprocess", preprocess_func)
    >>> executor.register_stage("integrate", integrate_func, depends_on=["preprocess"])
    >>> results = executor.run()
    """

    def __init__(self, logger: Optional[PipelineLogger] = None):
        self.logger = logger
        self.stages: Dict[str, Dict[str, Any]] = {}
        self.completed_stages: List[str] = []

    def register_stage(
        self,
        stage_id: str,
        func: Callable,
        depends_on: Optional[List[str]] = None,
        name: Optional[str] = None,
    ) -> None:
        """Register a stage function."""
        self.stages[stage_id] = {
            "func": func,
            "depends_on": list(depends_on or []),
            "name": name or stage_id,
        }

    def get_execution_order(self) -> List[str]:
        """Registered stage IDs in dependency order."""
        return topological_order(
            {stage_id: stage["depends_on"] for stage_id, stage in self.stages.items()}
        )

    def run(self, **kwargs) -> Dict[str, Any]:
        """Execute all registered stages in order.

        Returns
        -------
        Dict[str, Any]
            Map of stage_id to stage result

        Raises
        ------
        Exception
            Whatever a stage raises, after logging it
        """
        results: Dict[str, Any] = {}

        for stage_id in self.get_execution_order():
            stage = self.stages[stage_id]
            if self.logger:
                self.logger.log_stage_start(stage_id, stage["name"])

            start_time = time.time()
            try:
                results[stage_id] = stage["func"](**kwargs, stage_results=results)
            except Exception as e:
                if self.logger:
                    self.logger.log_stage_error(stage_id, str(e))
                raise

            self.completed_stages.append(stage_id)
            if self.logger:
                self.logger.log_stage_complete(stage_id, time.time() - start_time)
                summary = getattr(results[stage_id], "to_dict", None)
                if callable(summary):
                    self.logger.log_summary(stage_id, summary())

        return results
