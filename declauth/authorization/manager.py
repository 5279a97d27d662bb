"""Privilege engine manager for declauth.

The manager loads the privilege engine named in the "authorization" configuration and hands it out to the access
filters of all controllers in the process.
"""

from typing import Any, Optional

from declauth import config, declauth_logging
from declauth.authorization.engine import DenyAllEngine, PrivilegeEngine
from declauth.authorization.engines.static import StaticPrivilegeEngine

logger = declauth_logging.init_logging("authorization")

# Global engine manager instance
_manager: Optional["EngineManager"] = None


class EngineManager:
    """Loads and holds the privilege engine used by the process.

    The manager is responsible for:
    - Reading the name and options of the engine from configuration
    - Checking that the engine is healthy once loaded
    - Falling back to a deny-all engine if the configured engine cannot be loaded
    """

    ENGINES: dict[str, type[PrivilegeEngine]] = {
        "static": StaticPrivilegeEngine,
        "deny_all": DenyAllEngine,
    }

    def __init__(self, component: str = "authorization", engine: Optional[PrivilegeEngine] = None) -> None:
        """Initialize the engine manager.

        Args:
            component: The configuration component to read the engine options from
            engine: An engine to use instead of the one named in configuration
        """
        self._component: str = component
        self._engine: PrivilegeEngine

        if engine is not None:
            self._engine = engine
        else:
            self._engine = self._load_engine()

    def _engine_config(self) -> dict[str, Any]:
        return {
            "grants_file": config.get(self._component, "grants_file"),
            "guest_role": config.get(self._component, "guest_role", fallback="guest"),
        }

    def _load_engine(self) -> PrivilegeEngine:
        """Load the configured privilege engine, denying everything if this fails."""
        engine_name = ""

        try:
            engine_name = config.get(self._component, "engine", fallback="static")
            logger.info("Loading privilege engine: %s", engine_name)

            engine_cls = self.ENGINES.get(engine_name)

            if engine_cls is None:
                raise ValueError(f"unknown privilege engine '{engine_name}'")

            engine = engine_cls(self._engine_config())

            if not engine.health_check():
                logger.warning("Privilege engine %s is unhealthy", engine.get_name())

            logger.info("Privilege engine %s loaded successfully", engine.get_name())
            return engine

        except Exception as e:
            logger.error("Failed to load privilege engine %s: %s", engine_name, e)
            logger.error("SECURITY: Falling back to deny-all privilege engine for safety")
            return DenyAllEngine({})

    @property
    def engine(self) -> PrivilegeEngine:
        return self._engine

    def get_engine_name(self) -> str:
        return self._engine.get_name()


def get_engine_manager(component: str = "authorization") -> EngineManager:
    """Get the global engine manager instance, creating it on first access."""
    global _manager

    if _manager is None:
        _manager = EngineManager(component)

    return _manager


def set_engine(engine: Optional[PrivilegeEngine]) -> None:
    """Replace the engine of the global manager (or, if ``None``, discard the manager so that it is reloaded from
    configuration on next access)."""
    global _manager

    _manager = EngineManager(engine=engine) if engine is not None else None
