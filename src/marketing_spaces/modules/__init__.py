"""
Modules package - Built-in module kinds.

- analysis: Local Project Analysis Agent
- reader: Reader Engine
- naming: Naming Engine
- icons: Icon Generator
- marketing: Marketing Pack
"""

from dataclasses import replace

from marketing_spaces.core.module_types import ModuleRegistry
from marketing_spaces.modules.analysis import LOCAL_PROJECT_ANALYSIS
from marketing_spaces.modules.icons import ICON_GENERATOR
from marketing_spaces.modules.marketing import MARKETING_PACK
from marketing_spaces.modules.naming import NAMING_ENGINE
from marketing_spaces.modules.reader import READER_ENGINE


BUILTIN_MODULES = [
    LOCAL_PROJECT_ANALYSIS,
    READER_ENGINE,
    NAMING_ENGINE,
    ICON_GENERATOR,
    MARKETING_PACK,
]


def register_all_modules(registry: ModuleRegistry) -> None:
    """Register copies of the built-in module kinds."""
    for descriptor in BUILTIN_MODULES:
        registry.register(replace(descriptor))


def default_registry() -> ModuleRegistry:
    """A fresh registry populated with the built-in module kinds."""
    registry = ModuleRegistry()
    register_all_modules(registry)
    return registry


__all__ = [
    "BUILTIN_MODULES",
    "ICON_GENERATOR",
    "LOCAL_PROJECT_ANALYSIS",
    "MARKETING_PACK",
    "NAMING_ENGINE",
    "READER_ENGINE",
    "default_registry",
    "register_all_modules",
]
