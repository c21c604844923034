"""Pipeline orchestration module.

Provides YAML-based stage execution with checkpoint support and
dependency resolution, and an in-memory runner for the full
preprocessing -> integration -> clustering workflow.

Example Usage
-------------
>>> from mnn_integrator.pipeline import (
...     PipelineConfig,
...     PipelineExecutor,
...     PipelineLogger,
... )
>>> config = PipelineConfig("configs/pipeline.yaml")
>>> config.load()
>>> config.parse_stages()
>>> logger = PipelineLogger("logs/")
>>> logger.setup()
>>> exit_code = PipelineExecutor(config, logger).run()
>>> # Or everything in memory
>>> from mnn_integrator.pipeline import run_workflow
>>> results = run_workflow("configs/pancreas.yaml", output_dir="output/pancreas")
"""

__version__ = "1.0.0"

# Stage representation
from .stage import Stage

# Configuration
from .config import PipelineConfig, topological_order

# Logging
from .logger import (
    ColoredFormatter,
    PipelineLogger,
)

# Execution
from .executor import (
    InMemoryExecutor,
    PipelineExecutor,
)

# In-memory workflow
from .workflow import (
    build_workflow,
    run_workflow,
)

__all__ = [
    # Version
    "__version__",
    # Stage
    "Stage",
    # Config
    "PipelineConfig",
    "topological_order",
    # Logging
    "ColoredFormatter",
    "PipelineLogger",
    # Execution
    "InMemoryExecutor",
    "PipelineExecutor",
    # Workflow
    "build_workflow",
    "run_workflow",
]
