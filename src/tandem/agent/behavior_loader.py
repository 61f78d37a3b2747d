"""
Behavior loading for Tandem.

A behavior is an optional persona bundle (name, instructions, tone, memories and declared tools).
:func:`load_behavior` copies it, resolves the user-supplied implementation module into a
:class:`~tandem.tools.ToolRegistry` and checks every declared tool has an implementation.  A
declared tool without one only produces a warning here; calling it later is fatal.
"""

import copy
import importlib
import importlib.util
import json
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import (
    Any,
    Mapping,
    Optional,
    Union,
)

from pydantic import (
    ConfigDict,
    ValidationError,
)

from tandem.config import Settings
from tandem.core.errors import (
    ConfigurationError,
    RegistryLoadError,
)
from tandem.core.schema import Behavior
from tandem.tools import (
    ToolRegistry,
    declarations_from_registry,
)

logger = logging.getLogger(__name__)


class LoadedBehavior(Behavior):
    """A behavior with its resolved tool implementations attached."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    loaded_tools: Optional[ToolRegistry] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _import_tools_module(source: str) -> ModuleType:
    """Import *source*, either a path to a ``.py`` file or a dotted module name."""
    path = Path(source)
    if source.endswith(".py") or path.is_file():
        resolved = path.resolve()
        if not resolved.is_file():
            raise FileNotFoundError(f"No such file: {resolved}")
        module_name = f"tandem_user_tools_{resolved.stem}"
        spec = importlib.util.spec_from_file_location(module_name, resolved)
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load a module from {resolved}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise
        return module
    return importlib.import_module(source)


def load_tools_module(source: str) -> ToolRegistry:
    """
    Resolve *source* into a tool registry.

    Raises
    ------
    RegistryLoadError
        If the module cannot be found or raises while being imported.
    """
    logger.info("Loading tool implementations from %s", source)
    try:
        module = _import_tools_module(source)
        registry = ToolRegistry.from_module(module)
    except Exception as exc:  # pylint: disable=broad-except
        logger.error("Failed to load tools module %s: %s", source, exc)
        raise RegistryLoadError(
            f"Could not load the tools module '{source}'. Check the path and its content: {exc}"
        ) from exc
    logger.info("Loaded %d tool implementations: %s", len(registry), registry.names())
    return registry


def read_behavior_file(path: Union[str, Path]) -> dict[str, Any]:
    """Read a JSON behavior bundle from disk."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Could not read behavior file '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Behavior file '{path}' must contain a JSON object.")
    return data


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------
def load_behavior(
    behavior: Union[Behavior, Mapping[str, Any], None],
    tools_source: Optional[str] = None,
) -> Optional[LoadedBehavior]:
    """
    Load *behavior* and bind its tools.

    Parameters
    ----------
    behavior:
        A :class:`Behavior` or a plain mapping.  It is deep-copied, the caller's object is never
        modified.  ``None`` means no persona and no custom tools.
    tools_source:
        Path to a ``.py`` file or dotted module name with the tool implementations.

    Returns
    -------
    LoadedBehavior | None
        The copied behavior with ``loaded_tools`` set when a tools module was given.

    Raises
    ------
    ConfigurationError
        If *behavior* is not a mapping / :class:`Behavior` or does not validate.
    RegistryLoadError
        If the tools module cannot be loaded.  No partial state is returned.
    """
    if behavior is None:
        return None

    if isinstance(behavior, Behavior):
        data = behavior.model_dump()
    elif isinstance(behavior, Mapping):
        data = copy.deepcopy(dict(behavior))
    else:
        raise ConfigurationError("Invalid behavior format. Provide a mapping.")

    try:
        loaded = LoadedBehavior.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid behavior: {exc}") from exc

    if not loaded.instructions:
        logger.warning("The loaded behavior has no 'instructions'.")

    if tools_source:
        registry = load_tools_module(tools_source)
        if not loaded.tools:
            loaded.tools = declarations_from_registry(registry)
        for name in registry.missing(loaded.tools):
            logger.warning(
                "Tool '%s' is declared by the behavior but %s has no callable with that name.",
                name,
                tools_source,
            )
        loaded.loaded_tools = registry
    elif loaded.tools:
        logger.warning("The behavior declares tools but no tools module was provided.")

    return loaded


def load_configured_behavior(config: Settings) -> Optional[LoadedBehavior]:
    """
    Load the behavior named by ``BEHAVIOR_FILE`` / ``TOOLS_MODULE``.

    A tools module without a behavior file gives an anonymous behavior whose tool declarations
    are derived from the implementations.
    """
    if config.BEHAVIOR_FILE:
        return load_behavior(read_behavior_file(config.BEHAVIOR_FILE), config.TOOLS_MODULE)
    if config.TOOLS_MODULE:
        return load_behavior({}, config.TOOLS_MODULE)
    return None
