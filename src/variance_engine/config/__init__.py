"""Environment settings and run file loading."""

from variance_engine.config.run_config import RunConfig, load_run_config
from variance_engine.config.settings import Settings

__all__ = ["RunConfig", "Settings", "load_run_config"]
