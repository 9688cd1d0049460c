"""Model-driven repair of failing tests and low-coverage files."""

from .config import ConfigError, MenderConfig, load_config
from .pipelines import FixCoveragePipeline, FixTestsPipeline, ItemResult, PipelineResult

__all__ = [
    "ConfigError",
    "FixCoveragePipeline",
    "FixTestsPipeline",
    "ItemResult",
    "MenderConfig",
    "PipelineResult",
    "load_config",
]

__version__ = "0.1.0"
