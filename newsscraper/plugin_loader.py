"""
Plugin loader for automatic discovery of site-specific content strategies.
"""

import importlib
import inspect
import logging
import pkgutil
from types import ModuleType
from typing import Dict, List, Type

from .interfaces import ContentStrategy

logger = logging.getLogger(__name__)

PLUGIN_PACKAGE = f"{__package__}.plugins"

# Global registry of discovered strategy classes
_REGISTRY: Dict[str, Type[ContentStrategy]] = {}


def _load_module(name: str) -> ModuleType:
    full_name = f"{PLUGIN_PACKAGE}.{name}"
    mod = importlib.import_module(full_name)
    logger.debug(f"Loaded module: {full_name}")
    return mod


def refresh_registry() -> None:
    """Scan newsscraper/plugins/ and register ContentStrategy subclasses."""
    _REGISTRY.clear()

    package = importlib.import_module(PLUGIN_PACKAGE)
    module_count = 0

    for info in pkgutil.iter_modules(package.__path__):
        # Skip private modules
        if info.name.startswith("_"):
            continue

        try:
            mod = _load_module(info.name)
        except ImportError as e:
            logger.error(f"Failed to load plugin module {info.name}: {e}")
            continue
        module_count += 1

        for _, obj in inspect.getmembers(mod, inspect.isclass):
            if (issubclass(obj, ContentStrategy) and
                    obj is not ContentStrategy and
                    not inspect.isabstract(obj) and
                    obj.__module__ == mod.__name__):
                key = f"{info.name}.{obj.__name__}"
                _REGISTRY[key] = obj
                logger.debug(f"Registered content strategy: {key}")

    logger.info(f"Plugin discovery complete: {module_count} modules, {len(_REGISTRY)} strategies")


def get(class_path: str) -> Type[ContentStrategy]:
    """Get a strategy class by its plugin path, e.g. ``bbc.BbcStrategy``.

    Raises:
        KeyError: If the class is not found
    """
    if not _REGISTRY:
        refresh_registry()

    if class_path not in _REGISTRY:
        available = list(_REGISTRY.keys())
        raise KeyError(f"Strategy '{class_path}' not found. Available: {available}")

    return _REGISTRY[class_path]


def list_available() -> Dict[str, Type[ContentStrategy]]:
    """Get a copy of all registered strategies."""
    if not _REGISTRY:
        refresh_registry()
    return _REGISTRY.copy()


def load_strategies() -> List[ContentStrategy]:
    """Instantiate every registered strategy, in registry key order."""
    return [cls() for _, cls in sorted(list_available().items())]
