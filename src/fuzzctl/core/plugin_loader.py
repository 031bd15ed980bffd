"""Engine plugin discovery and loading from plugins/ directories."""

from __future__ import annotations

import importlib.util
import logging
import sys
from pathlib import Path

from fuzzctl.core.exceptions import PluginLoadError
from fuzzctl.core.registry import EngineRegistry
from fuzzctl.core.schema import PluginInfo

log = logging.getLogger(__name__)


def _find_plugin_modules(plugin_dir: Path) -> list[Path]:
    """Non-private .py files under plugin_dir, in a stable order."""
    if not plugin_dir.is_dir():
        return []
    return sorted(p for p in plugin_dir.rglob("*.py") if not p.name.startswith("_"))


def _module_name(path: Path) -> str:
    return f"fuzzctl_plugin_{path.stem}_{abs(hash(str(path)))}"


class PluginLoader:
    """Loads engine plugins: modules exposing ``register(registry)``."""

    def __init__(self, plugin_dirs: list[Path], registry: EngineRegistry) -> None:
        self._plugin_dirs = [Path(d).resolve() for d in plugin_dirs]
        self._registry = registry
        self._loaded: list[PluginInfo] = []
        self.load_errors: list[tuple[Path, PluginLoadError]] = []

    def discover_plugins(self) -> list[PluginInfo]:
        discovered: list[PluginInfo] = []
        for plugin_dir in self._plugin_dirs:
            for mod_path in _find_plugin_modules(plugin_dir):
                plugin_type = mod_path.parent.name if mod_path.parent != plugin_dir else "root"
                discovered.append(
                    PluginInfo(
                        name=mod_path.stem,
                        path=mod_path,
                        module_name=_module_name(mod_path),
                        plugin_type=plugin_type,
                    )
                )
        return discovered

    def load_plugin(self, plugin_path: Path) -> PluginInfo:
        """Import one plugin module and call its register(registry)."""
        path = Path(plugin_path).resolve()
        if not path.exists():
            raise PluginLoadError(f"Plugin path does not exist: {path}")

        module_name = _module_name(path)
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise PluginLoadError(f"Could not load spec for: {path}")

        try:
            mod = importlib.util.module_from_spec(spec)
            sys.modules[module_name] = mod
            spec.loader.exec_module(mod)
        except Exception as e:
            sys.modules.pop(module_name, None)
            raise PluginLoadError(f"Failed to load plugin {path}: {e}") from e

        if not hasattr(mod, "register"):
            raise PluginLoadError(f"Plugin has no register() function: {path}")

        try:
            mod.register(self._registry)
        except Exception as e:
            raise PluginLoadError(f"Plugin register() failed for {path}: {e}") from e

        info = PluginInfo(name=path.stem, path=path, module_name=module_name, plugin_type=path.parent.name)
        self._loaded.append(info)
        log.debug("Loaded plugin %s", path)
        return info

    def load_all(self) -> list[PluginInfo]:
        """Load every plugin found; failures are logged and kept in ``load_errors``."""
        self._loaded = []
        self.load_errors = []
        for plugin_dir in self._plugin_dirs:
            for mod_path in _find_plugin_modules(plugin_dir):
                try:
                    self.load_plugin(mod_path)
                except PluginLoadError as e:
                    log.warning("Failed to load plugin %s: %s", mod_path, e)
                    self.load_errors.append((mod_path, e))
        if self.load_errors:
            log.warning(
                "%d plugin(s) failed to load: %s",
                len(self.load_errors),
                ", ".join(str(p) for p, _ in self.load_errors),
            )
        return list(self._loaded)
