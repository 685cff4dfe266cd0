"""
Irene assistant lifecycle hooks.

Plugins are Python modules that expose a ``register(manager)`` function and hook into
the request/response cycle through built-in **and** custom events.

Built-in hooks:
    - post_response(parsed)          -> after a model reply has been classified
    - pre_execute(command)           -> before a confirmed command runs; a returned
                                        string replaces the command
    - post_execute(command, result)  -> after a command ran (successfully or not)

Discovery sources (in order):
    1. Installed packages advertising ``irene.plugins`` entry points
    2. Modules listed in ``config.plugins.enabled``

Example plugin (``my_plugin.py``):

    PLUGIN_NAME = "audit"
    PLUGIN_DESCRIPTION = "Logs every executed command"

    def on_post_execute(command, result, **kw):
        print(f"{command} -> {result.exit_code}")

    def register(manager):
        manager.add_hook("post_execute", on_post_execute)
"""
from __future__ import annotations

import importlib
import importlib.metadata
import logging
from typing import Any, Callable, Dict, Iterable, List, Set, Tuple

logger = logging.getLogger("irene.plugins")

BUILTIN_HOOKS: Tuple[str, ...] = (
    "post_response",
    "pre_execute",
    "post_execute",
)

ENTRY_POINT_GROUP = "irene.plugins"


class PluginManager:
    """Central registry for plugins, hooks, and metadata."""

    def __init__(self) -> None:
        self._hooks: Dict[str, List[Tuple[int, Callable]]] = {
            name: [] for name in BUILTIN_HOOKS
        }
        self._plugins: List[Dict[str, Any]] = []
        self._loaded_names: Set[str] = set()

    # ------------------------------------------------------------------
    # Hook management
    # ------------------------------------------------------------------

    def register_hook_type(self, event: str) -> None:
        """Register a custom hook event name."""
        if event not in self._hooks:
            self._hooks[event] = []
            logger.debug("Registered custom hook type: %s", event)

    def add_hook(
        self, event: str, callback: Callable, *, priority: int = 100
    ) -> None:
        """Add a callback for *event*.

        Lower ``priority`` values run first (default 100).
        If *event* is unknown it is automatically registered as a custom hook.
        """
        if event not in self._hooks:
            self.register_hook_type(event)
        self._hooks[event].append((priority, callback))
        self._hooks[event].sort(key=lambda t: t[0])

    def hook(self, event: str, **kwargs: Any) -> Any:
        """Fire all callbacks for *event*. Returns the last non-None result."""
        result = None
        for _prio, cb in self._hooks.get(event, []):
            try:
                ret = cb(**kwargs)
                if ret is not None:
                    result = ret
            except Exception:
                logger.exception(
                    "Plugin hook %s raised an error in %s", event, cb
                )
        return result

    def get_hook_names(self) -> List[str]:
        """Return all registered hook names (built-in + custom)."""
        return list(self._hooks.keys())

    # ------------------------------------------------------------------
    # Plugin registration
    # ------------------------------------------------------------------

    def register_plugin(self, name: str, description: str = "", *, version: str = "0.0.0") -> None:
        if name in self._loaded_names:
            logger.debug("Plugin %s already registered, skipping", name)
            return
        self._plugins.append({"name": name, "description": description, "version": version})
        self._loaded_names.add(name)
        logger.info("Registered plugin: %s v%s", name, version)

    def list_plugins(self) -> List[Tuple[str, str]]:
        """Return ``[(name, description), ...]`` for all registered plugins."""
        return [(p["name"], p["description"]) for p in self._plugins]

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self, enabled: Iterable[str] = ()) -> None:
        self._discover_entry_points()
        for module_name in enabled:
            self.load_module(module_name, source="config")

    def _discover_entry_points(self) -> None:
        try:
            plugin_eps = importlib.metadata.entry_points(group=ENTRY_POINT_GROUP)
        except Exception:
            logger.debug("Entry-point discovery not available", exc_info=True)
            return
        for ep in plugin_eps:
            try:
                register_fn = ep.load()
                register_fn(self)
                if ep.name not in self._loaded_names:
                    self.register_plugin(ep.name, f"Entry-point plugin: {ep.value}")
            except Exception:
                logger.exception("Failed to load entry-point plugin: %s", ep.name)

    def load_module(self, module_name: str, source: str = "") -> None:
        """Import a module and call its register() function."""
        try:
            mod = importlib.import_module(module_name)
            if hasattr(mod, "register"):
                mod.register(self)
                self.register_plugin(
                    getattr(mod, "PLUGIN_NAME", module_name.split(".")[-1]),
                    getattr(mod, "PLUGIN_DESCRIPTION", ""),
                    version=getattr(mod, "PLUGIN_VERSION", "0.0.0"),
                )
        except Exception:
            logger.exception(
                "Failed to load plugin module: %s (source: %s)",
                module_name,
                source,
            )
