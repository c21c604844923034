"""Pipeline configuration loader and validator."""

import re
from collections import deque
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .stage import Stage

TEMPLATE_PATTERN = re.compile(r"\{([^}]+)\}")


def topological_order(dependencies: Dict[str, List[str]]) -> List[str]:
    """Order nodes so every node follows its dependencies (Kahn's algorithm).

    Ties keep the insertion order of ``dependencies``.

    Raises
    ------
    ValueError
        If the dependencies contain a cycle
    """
    in_degree = {node: len(deps) for node, deps in dependencies.items()}
    queue = deque(node for node, degree in in_degree.items() if degree == 0)
    order: List[str] = []

    while queue:
        node = queue.popleft()
        order.append(node)
        for other, deps in dependencies.items():
            if node in deps:
                in_degree[other] -= 1
                if in_degree[other] == 0:
                    queue.append(other)

    if len(order) != len(dependencies):
        raise ValueError("Circular dependency detected - cannot compute execution order")
    return order


class PipelineConfig:
    """Loads and manages pipeline configuration from YAML files.

    The YAML file has ``pipeline`` (name, version), ``global`` (shared
    paths such as the output root and dataset config) and ``stages``
    sections. String values may reference other entries with templates
    like ``{global.output_dir}`` or ``{stages.preprocess.outputs.merged}``.

    Parameters
    ----------
    config_path : str
        Path to the YAML configuration file

    Example
    -------
    >>> config = PipelineConfig("configs/pipeline.yaml")
    >>> config.load()
    >>> config.parse_stages()
    >>> valid, errors = config.validate_dependencies()
    >>> order = config.get_execution_order()
    """

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.raw_config: Dict[str, Any] = {}
        self.stages: Dict[str, Stage] = {}
        self.global_settings: Dict[str, Any] = {}

    def load(self) -> None:
        """Load YAML configuration file.

        Raises
        ------
        FileNotFoundError
            If config file doesn't exist
        yaml.YAMLError
            If YAML is malformed
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, "r") as f:
            self.raw_config = yaml.safe_load(f) or {}

        self.global_settings = {
            "pipeline": self.raw_config.get("pipeline", {}),
            "global": self.raw_config.get("global", {}),
        }

    def parse_stages(self) -> None:
        """Convert YAML stage definitions to Stage objects with resolved paths.

        Raises
        ------
        KeyError
            If the stages section or a stage's script_module is missing
        """
        if "stages" not in self.raw_config:
            raise KeyError("No 'stages' section in configuration")

        for stage_id, stage_def in self.raw_config["stages"].items():
            stage = Stage.from_dict(stage_def, stage_id)
            stage.inputs = {k: self.resolve_paths(v) for k, v in stage.inputs.items()}
            stage.outputs = {k: self.resolve_paths(v) for k, v in stage.outputs.items()}
            stage.args = {k: self._resolve_value(v) for k, v in stage.args.items()}
            stage.required_files = [self.resolve_paths(p) for p in stage.required_files]
            self.stages[stage_id] = stage

    def _resolve_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.resolve_paths(value)
        if isinstance(value, list):
            return [self._resolve_value(v) for v in value]
        return value

    def _lookup(self, ref: str) -> Optional[Any]:
        value: Any = self.raw_config
        for part in ref.split("."):
            if not isinstance(value, dict) or part not in value:
                return None
            value = value[part]
        if isinstance(value, (dict, list)) or value is None:
            return None
        return value

    def resolve_paths(self, path_template: str) -> str:
        """Resolve templates like ``{stages.preprocess.outputs.merged}``.

        Templates can reference ``{global.*}``, ``{pipeline.*}`` and the
        inputs, outputs or args of other stages. Unknown references are
        left as-is. Resolution repeats until no known template remains.
        """

        def replace_template(match):
            value = self._lookup(match.group(1))
            return match.group(0) if value is None else str(value)

        resolved = path_template
        for _ in range(10):
            replaced = TEMPLATE_PATTERN.sub(replace_template, resolved)
            if replaced == resolved:
                break
            resolved = replaced
        return resolved

    def validate_dependencies(self) -> Tuple[bool, List[str]]:
        """Check that dependencies name known stages and contain no cycle.

        Returns
        -------
        Tuple[bool, List[str]]
            (valid, errors)
        """
        errors = [
            f"Stage '{stage_id}' depends on unknown stage '{dep}'"
            for stage_id, stage in self.stages.items()
            for dep in stage.depends_on
            if dep not in self.stages
        ]

        if not errors:
            try:
                self.get_execution_order()
            except ValueError:
                errors.append("Circular dependency detected in stage dependencies")

        return (len(errors) == 0, errors)

    def get_execution_order(self) -> List[str]:
        """Compute stage execution order via topological sort.

        Raises
        ------
        ValueError
            If circular dependencies detected
        """
        return topological_order(
            {stage_id: stage.depends_on for stage_id, stage in self.stages.items()}
        )

    def get_stage(self, stage_id: str) -> Optional[Stage]:
        """Get a stage by its ID, or None."""
        return self.stages.get(stage_id)

    def list_stages(self) -> List[str]:
        """List all stage IDs."""
        return list(self.stages.keys())

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "pipeline": self.global_settings.get("pipeline", {}),
            "global": self.global_settings.get("global", {}),
            "stages": {
                stage_id: stage.to_dict() for stage_id, stage in self.stages.items()
            },
        }

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "PipelineConfig":
        """Create PipelineConfig from dictionary, resolving templates."""
        config = cls(".")
        config.raw_config = config_dict
        config.global_settings = {
            "pipeline": config_dict.get("pipeline", {}),
            "global": config_dict.get("global", {}),
        }
        if "stages" in config_dict:
            config.parse_stages()
        return config
