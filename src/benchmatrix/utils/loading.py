"""
Class Loading

Resolve configured class names (``instrument.<name>.class``,
``results.<name>.class``) to Python classes.
"""

import importlib
from typing import Type

from benchmatrix.core.exceptions import InvalidConfigurationError


def class_identifier(cls: type) -> str:
    """Return the dotted name a configuration file uses to refer to ``cls``."""
    return f"{cls.__module__}.{cls.__qualname__}"


def load_class(class_name: str, key: str = None) -> Type:
    """
    Import a class from a dotted path.

    Both ``package.module.Class`` and ``package.module:Class`` are accepted;
    nested classes resolve through the attribute path.

    Args:
        class_name: Dotted class reference
        key: Configuration key the name came from, for error reporting

    Returns:
        The class object

    Raises:
        InvalidConfigurationError: If the module or attribute cannot be found
    """
    class_name = class_name.strip()
    if ":" in class_name:
        module_name, _, attr_path = class_name.partition(":")
        candidates = [(module_name, attr_path)]
    else:
        parts = class_name.split(".")
        # Try the longest module prefix first
        candidates = [(".".join(parts[:i]), ".".join(parts[i:])) for i in range(len(parts) - 1, 0, -1)]

    for module_name, attr_path in candidates:
        if not module_name or not attr_path:
            continue
        try:
            target = importlib.import_module(module_name)
        except ModuleNotFoundError as e:
            # Only swallow failures for the module we asked for, not its imports
            if e.name and (module_name == e.name or module_name.startswith(e.name + ".")):
                continue
            raise InvalidConfigurationError(f"Cannot import '{class_name}': {e}", key=key)
        try:
            for attr in attr_path.split("."):
                target = getattr(target, attr)
        except AttributeError:
            continue
        if not isinstance(target, type):
            raise InvalidConfigurationError(f"'{class_name}' is not a class", key=key)
        return target

    raise InvalidConfigurationError(f"Cannot find class '{class_name}'", key=key)
