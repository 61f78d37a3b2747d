"""
Tests for the tool registry and behavior loading.
"""

import logging
import textwrap
import types

import pytest

from tandem.agent.behavior_loader import (
    LoadedBehavior,
    load_behavior,
    load_configured_behavior,
    read_behavior_file,
)
from tandem.config import Settings
from tandem.core.errors import (
    ConfigurationError,
    RegistryLoadError,
)
from tandem.core.schema import (
    Behavior,
    ToolDeclaration,
)
from tandem.tools import (
    ToolRegistry,
    declarations_from_registry,
)

WEATHER_DECL = {
    "name": "get_weather",
    "description": "Weather for a city",
    "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
    "required": ["city"],
}


def _write_tools(tmp_path, source: str, name: str = "user_tools.py") -> str:
    path = tmp_path / name
    path.write_text(textwrap.dedent(source), encoding="utf-8")
    return str(path)


# ---------------------------------------------------------------------------
# ToolRegistry
# ---------------------------------------------------------------------------
def test_register_decorator_and_lookup() -> None:
    """Decorated functions are found by name."""
    registry = ToolRegistry()

    @registry.register("add")
    def _add(a: int, b: int) -> int:
        return a + b

    assert "add" in registry
    assert registry.get("add")(a=1, b=2) == 3
    assert registry.get("missing") is None


def test_duplicate_registration_rejected() -> None:
    """A name can only be registered once."""
    registry = ToolRegistry({"echo": lambda text: text})
    with pytest.raises(ValueError, match="already registered"):
        registry.add("echo", lambda text: text)


def test_non_callable_rejected() -> None:
    """Only callables can be tools."""
    with pytest.raises(TypeError):
        ToolRegistry({"answer": 42})


def test_from_module_collects_public_functions() -> None:
    """Private names, classes and imported helpers are skipped."""
    module = types.ModuleType("fake_tools")
    exec(  # noqa: S102
        textwrap.dedent(
            """
            from os.path import join

            def public(x):
                return x

            def _private(x):
                return x

            class NotATool:
                pass
            """
        ),
        module.__dict__,
    )
    assert ToolRegistry.from_module(module).names() == ["public"]


def test_missing_reports_unimplemented_declarations() -> None:
    """Declarations without an implementation are listed."""
    registry = ToolRegistry({"a": lambda: None})
    decls = [ToolDeclaration(name="a"), ToolDeclaration(name="b")]
    assert registry.missing(decls) == ["b"]


def test_declarations_from_registry_uses_signatures() -> None:
    """Type hints, defaults and docstrings become the declaration."""
    registry = ToolRegistry()

    @registry.register("search")
    def _search(query: str, limit: int = 5, tags: list = None) -> list:  # type: ignore[assignment]
        """Search the notes."""
        return []

    (decl,) = declarations_from_registry(registry)
    assert decl.name == "search"
    assert decl.description == "Search the notes."
    assert decl.required == ["query"]
    assert decl.parameters["properties"] == {
        "query": {"type": "string"},
        "limit": {"type": "integer"},
        "tags": {"type": "array"},
    }


# ---------------------------------------------------------------------------
# load_behavior
# ---------------------------------------------------------------------------
def test_no_behavior_returns_none() -> None:
    """Without a behavior there is nothing to load."""
    assert load_behavior(None) is None


def test_behavior_is_copied_not_mutated(tmp_path) -> None:
    """The caller's mapping is left untouched."""
    source = _write_tools(tmp_path, "def get_weather(city):\n    return {'city': city}\n")
    original = {"name": "Bot", "instructions": "Be nice", "memories": ["m1"], "tools": [WEATHER_DECL]}
    snapshot = {**original, "memories": list(original["memories"])}

    loaded = load_behavior(original, source)
    loaded.memories.append("m2")

    assert original == snapshot
    assert "loaded_tools" not in original
    assert isinstance(loaded, LoadedBehavior)
    assert loaded.loaded_tools.names() == ["get_weather"]


def test_behavior_accepts_model_instance() -> None:
    """A Behavior instance is accepted and copied."""
    behavior = Behavior(name="Bot", instructions="x", response_tone="dry")
    loaded = load_behavior(behavior)
    assert loaded.response_tone == "dry"
    assert loaded is not behavior


def test_camel_case_tone_alias() -> None:
    """JSON bundles may use responseTone."""
    loaded = load_behavior({"instructions": "x", "responseTone": "formal"})
    assert loaded.response_tone == "formal"


def test_invalid_behavior_format() -> None:
    """Only mappings or Behavior instances are accepted."""
    with pytest.raises(ConfigurationError):
        load_behavior("not a behavior")  # type: ignore[arg-type]


def test_tools_without_source_warns(caplog) -> None:
    """Declared tools with no module is a warning, not an error."""
    with caplog.at_level(logging.WARNING):
        loaded = load_behavior({"instructions": "x", "tools": [WEATHER_DECL]})
    assert loaded.loaded_tools is None
    assert "no tools module was provided" in caplog.text


def test_missing_instructions_warns(caplog) -> None:
    """A behavior without instructions still loads."""
    with caplog.at_level(logging.WARNING):
        loaded = load_behavior({"name": "Bot"})
    assert loaded.name == "Bot"
    assert "no 'instructions'" in caplog.text


def test_declared_tool_without_callable_warns(tmp_path, caplog) -> None:
    """Incomplete implementations only warn at load time."""
    source = _write_tools(tmp_path, "def other(x):\n    return x\n")
    with caplog.at_level(logging.WARNING):
        loaded = load_behavior({"instructions": "x", "tools": [WEATHER_DECL]}, source)
    assert "get_weather" in caplog.text
    assert "get_weather" not in loaded.loaded_tools


def test_missing_module_is_fatal(tmp_path) -> None:
    """A tools file that does not exist fails the load."""
    with pytest.raises(RegistryLoadError, match="Could not load the tools module"):
        load_behavior({"tools": [WEATHER_DECL]}, str(tmp_path / "nope.py"))


def test_module_raising_on_import_is_fatal(tmp_path) -> None:
    """Import-time errors in the tools file fail the load."""
    source = _write_tools(tmp_path, "raise RuntimeError('boom')\n", name="broken.py")
    with pytest.raises(RegistryLoadError, match="boom"):
        load_behavior({"tools": [WEATHER_DECL]}, source)


def test_unknown_dotted_module_is_fatal() -> None:
    """Dotted names are imported too."""
    with pytest.raises(RegistryLoadError):
        load_behavior({"tools": [WEATHER_DECL]}, "tandem_no_such_module.tools")


def test_declarations_derived_when_behavior_declares_none(tmp_path) -> None:
    """A module without declarations gets them from its signatures."""
    source = _write_tools(tmp_path, "def shout(text: str) -> str:\n    '''Upper-case.'''\n    return text.upper()\n")
    loaded = load_behavior({"instructions": "x"}, source)
    assert [decl.name for decl in loaded.tools] == ["shout"]
    assert loaded.tools[0].required == ["text"]


def test_load_configured_behavior(tmp_path) -> None:
    """BEHAVIOR_FILE and TOOLS_MODULE drive loading from settings."""
    behavior_file = tmp_path / "behavior.json"
    behavior_file.write_text('{"name": "Bot", "instructions": "x"}', encoding="utf-8")

    assert load_configured_behavior(Settings(BEHAVIOR_FILE=None, TOOLS_MODULE=None)) is None
    loaded = load_configured_behavior(Settings(BEHAVIOR_FILE=str(behavior_file)))
    assert loaded.name == "Bot"


def test_read_behavior_file_rejects_non_object(tmp_path) -> None:
    """Behavior files must hold a JSON object."""
    path = tmp_path / "b.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        read_behavior_file(path)
