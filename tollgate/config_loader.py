"""
Configuration and resource loader.

Locates the capability table YAML and builds the resolver from it. The
table path comes from settings; when unset, the bundled config/ directory
is used, and when that is missing too, the built-in table.
"""

from __future__ import annotations

import logging
from pathlib import Path

from tollgate.auth.capabilities import CapabilityResolver, CapabilityTable
from tollgate.config import Settings, get_settings

logger = logging.getLogger(__name__)


class ConfigLoader:
    """
    Loads configuration files for the gatekeeper.
    """
    
    def __init__(
        self,
        config_dir: Path | str | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        
        # Default to config/ directory relative to this file's parent
        if config_dir is None:
            config_dir = Path(__file__).parent.parent / "config"
        self.config_dir = Path(config_dir)
    
    def capability_table_path(self) -> Path | None:
        """Where the capability table lives, if anywhere."""
        if self.settings.capability_table_path:
            return Path(self.settings.capability_table_path)
        
        for name in ("capabilities.yaml", "capabilities.yml"):
            path = self.config_dir / name
            if path.exists():
                return path
        return None
    
    def load_capability_table(self) -> CapabilityTable:
        """Load the table from YAML, or fall back to the built-in one."""
        path = self.capability_table_path()
        if path is None:
            logger.info("No capability table file found, using built-in table")
            return CapabilityResolver().table
        return CapabilityTable.from_yaml(path)
    
    def build_resolver(self) -> CapabilityResolver:
        """Resolver bound to the table file so it can hot-reload."""
        path = self.capability_table_path()
        if path is None:
            logger.info("No capability table file found, using built-in table")
            return CapabilityResolver()
        logger.info("Loading capability table from %s", path)
        return CapabilityResolver.from_file(path)


def load_resolver(
    config_dir: Path | str | None = None,
    settings: Settings | None = None,
) -> CapabilityResolver:
    """
    Convenience function to build the capability resolver.
    """
    return ConfigLoader(config_dir, settings).build_resolver()
