"""
Troupe Modules

Built-in modules for task execution.
"""

from troupe.modules.base import Module, ModuleContext, ModuleResult, get_module, list_modules, register_module

__all__ = [
    'Module',
    'ModuleContext',
    'ModuleResult',
    'get_module',
    'list_modules',
    'register_module',
]
