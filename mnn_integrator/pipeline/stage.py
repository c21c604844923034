"""Stage representation and validation for pipeline execution."""

import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple


@dataclass
class Stage:
    """A single pipeline stage run as ``python -m <script_module>``.

    Attributes
    ----------
    name : str
        Human-readable stage name (e.g., "Integration")
    stage_id : str
        Short identifier (e.g., "preprocess", "integrate")
    script_module : str
        Python module path (e.g., "mnn_integrator.core.integration")
    depends_on : List[str]
        Stage IDs this stage depends on
    inputs : Dict[str, str]
        Input names mapped to file/directory paths
    outputs : Dict[str, str]
        Output names mapped to file/directory paths
    args : Dict[str, Any]
        Command-line arguments for the stage. ``True`` becomes a bare flag,
        ``False``/``None`` are omitted and lists expand to several values.
    required_files : List[str]
        Files that must exist before the stage can run
    optional : bool
        Whether this stage is skipped when its config file is missing

    Example
    -------
    >>> stage = Stage(
    ...     name="Integration",
    ...     stage_id="integrate",
    ...     script_module="mnn_integrator.core.integration",
    ...     inputs={"merged": "out/preprocessing/merged.h5ad"},
    ...     outputs={"corrected": "out/integration/corrected.h5ad"},
    ...     args={"input": "out/preprocessing/merged.h5ad", "output": "out/integration"},
    ... )
    >>> valid, errors = stage.validate_inputs()
    """

    name: str
    stage_id: str
    script_module: str
    depends_on: List[str] = field(default_factory=list)
    inputs: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    args: Dict[str, Any] = field(default_factory=dict)
    required_files: List[str] = field(default_factory=list)
    optional: bool = False

    def validate_inputs(self) -> Tuple[bool, List[str]]:
        """Check that all inputs and required files exist.

        Returns
        -------
        Tuple[bool, List[str]]
            (success, errors)
        """
        errors = [
            f"Input '{name}' not found: {path}"
            for name, path in self.inputs.items()
            if not Path(path).exists()
        ]
        errors.extend(
            f"Required file not found: {path}"
            for path in self.required_files
            if not Path(path).exists()
        )
        return (len(errors) == 0, errors)

    def validate_outputs(self) -> Tuple[bool, List[str]]:
        """Check that all declared outputs exist after execution."""
        errors = [
            f"Output '{name}' not found: {path}"
            for name, path in self.outputs.items()
            if not Path(path).exists()
        ]
        return (len(errors) == 0, errors)

    def get_command(self) -> List[str]:
        """Build the argument list for ``subprocess.run``.

        Example
        -------
        >>> stage.get_command()
        ['/usr/bin/python3', '-m', 'mnn_integrator.core.integration', '--input', '...']
        """
        cmd = [sys.executable, "-m", self.script_module]

        for key, value in self.args.items():
            flag = "--" + key.replace("_", "-")

            if value is True:
                cmd.append(flag)
            elif value is False or value is None:
                continue
            elif isinstance(value, (list, tuple)):
                if value:
                    cmd.append(flag)
                    cmd.extend(str(v) for v in value)
            else:
                cmd.extend([flag, str(value)])

        return cmd

    def to_dict(self) -> Dict[str, Any]:
        """Convert stage to dictionary for serialization."""
        return {
            "name": self.name,
            "stage_id": self.stage_id,
            "script_module": self.script_module,
            "depends_on": list(self.depends_on),
            "inputs": dict(self.inputs),
            "outputs": dict(self.outputs),
            "args": dict(self.args),
            "required_files": list(self.required_files),
            "optional": self.optional,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], stage_id: str) -> "Stage":
        """Create Stage from a stage definition mapping."""
        if "script_module" not in data:
            raise KeyError(f"Stage '{stage_id}' missing required field 'script_module'")
        return cls(
            name=data.get("name", stage_id),
            stage_id=stage_id,
            script_module=data["script_module"],
            depends_on=list(data.get("depends_on", [])),
            inputs=dict(data.get("inputs", {})),
            outputs=dict(data.get("outputs", {})),
            args=dict(data.get("args", {})),
            required_files=list(data.get("required_files", [])),
            optional=data.get("optional", False),
        )
