"""
Tool registry for Tandem.

A :class:`ToolRegistry` is the capability table the function-call loop dispatches through: an
explicit mapping from tool name to the callable that implements it.  Registries are filled either
with the ``register`` decorator or from a user-supplied module (see
:mod:`tandem.agent.behavior_loader`).  Tools are called with keyword arguments and may be plain
functions or coroutine functions.
"""

import inspect
import logging
from types import (
    ModuleType,
    UnionType,
)
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from tandem.core.schema import ToolDeclaration

logger = logging.getLogger(__name__)

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


class ToolRegistry:
    """Mapping of tool names to their implementations."""

    def __init__(self, tools: Optional[Mapping[str, Callable]] = None) -> None:
        self._tools: Dict[str, Callable] = {}
        for name, fn in (tools or {}).items():
            self.add(name, fn)

    # -- population ---------------------------------------------------------
    def add(self, name: str, fn: Callable) -> None:
        """
        Add *fn* under *name*.

        Raises
        ------
        ValueError
            If a tool with the same name is already registered.
        TypeError
            If *fn* is not callable.
        """
        if name in self._tools:
            raise ValueError(f"Tool '{name}' is already registered.")
        if not callable(fn):
            raise TypeError(f"Tool '{name}' must be callable, got {type(fn).__name__}.")
        logger.debug("Registering tool '%s'", name)
        self._tools[name] = fn

    def register(self, name: str) -> Callable:
        """
        Register a tool function with the given name.

        Used as a decorator::

            @registry.register("my_tool")
            def my_tool_function(arg1, arg2):
                return result
        """

        def wrapper(fn: Callable) -> Callable:
            self.add(name, fn)
            return fn

        return wrapper

    @classmethod
    def from_module(cls, module: ModuleType) -> "ToolRegistry":
        """
        Collect the public callables of *module*.

        If the module defines ``__all__`` only those names are taken; otherwise every callable
        attribute that is not private, not a class and was defined in the module itself.
        """
        names: Iterable[str] = getattr(module, "__all__", None) or dir(module)
        registry = cls()
        for name in names:
            if name.startswith("_"):
                continue
            obj = getattr(module, name, None)
            if obj is None or inspect.isclass(obj) or not callable(obj):
                continue
            if getattr(obj, "__module__", module.__name__) != module.__name__ and not hasattr(
                module, "__all__"
            ):
                continue  # imported helper, not a tool
            registry.add(name, obj)
        return registry

    # -- lookup -------------------------------------------------------------
    def get(self, name: str) -> Optional[Callable]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        """Return sorted list of registered tool names."""
        return sorted(self._tools)

    def missing(self, declarations: Iterable[ToolDeclaration]) -> List[str]:
        """Names declared in *declarations* that have no implementation here."""
        return [decl.name for decl in declarations if decl.name not in self._tools]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._tools)


def _json_type(annotation: Any) -> str:
    origin = get_origin(annotation)
    if origin is Union or origin is UnionType:  # Optional[X], X | None
        args = [arg for arg in get_args(annotation) if arg is not type(None)]
        return _json_type(args[0]) if args else "string"
    return _JSON_TYPES.get(origin or annotation, "string")


def declarations_from_registry(registry: ToolRegistry) -> List[ToolDeclaration]:
    """
    Derive tool declarations from the implementations' signatures.

    Used when a behavior supplies an implementation module but does not declare its tools.  The
    docstring becomes the description, type hints map to JSON-schema types and parameters
    without defaults are required.
    """
    declarations: List[ToolDeclaration] = []
    for name in registry.names():
        func = registry.get(name)
        sig = inspect.signature(func)
        try:
            type_hints = get_type_hints(func)
        except Exception:  # pylint: disable=broad-except
            type_hints = {}
        properties: Dict[str, Any] = {}
        required: List[str] = []
        for param_name, param in sig.parameters.items():
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            properties[param_name] = {"type": _json_type(type_hints.get(param_name, str))}
            if param.default is inspect.Parameter.empty:
                required.append(param_name)
        declarations.append(
            ToolDeclaration(
                name=name,
                description=inspect.getdoc(func) or "",
                parameters={"type": "object", "properties": properties},
                required=required,
            )
        )
    return declarations
