"""
Upkeep - declarative machine setup.

Converges a machine toward a declared state: git repositories cloned or
fast-forwarded, dotfile symlinks installed, and setup commands run, in
dependency order.
"""

__version__ = "0.4.0"

# Re-export the public entry points for convenience
from upkeep.core.config.loader import load_config
from upkeep.core.config.models import UpkeepConfig
from upkeep.core.errors import ConfigError, CycleError, UpkeepError
from upkeep.core.run.executor import run
from upkeep.core.run.models import RunReport, TaskState

__all__ = [
    "ConfigError",
    "CycleError",
    "RunReport",
    "TaskState",
    "UpkeepConfig",
    "UpkeepError",
    "__version__",
    "load_config",
    "run",
]
