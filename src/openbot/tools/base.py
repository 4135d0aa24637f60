"""
Base classes for tools.

A tool advertises a ToolDefinition (name, description, JSON Schema for its
arguments) and runs with keyword arguments decoded from a tool call. Tools
return their output as text and signal failure by raising; the registry
turns every failure into a ToolExecutionError.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Annotated, Any, Awaitable, Callable, Union, get_args, get_origin, get_type_hints

from ..errors import ToolExecutionError
from ..llm.base import ToolDefinition

_NoneType = type(None)

# JSON Schema primitive type -> accepted Python types. bool is excluded from
# the numeric types because it subclasses int.
_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def validate_arguments(name: str, schema: dict[str, Any], arguments: dict[str, Any]) -> None:
    """Check decoded tool arguments against the tool's parameter schema.

    Only the top level is checked: required keys, primitive types, enums and
    `additionalProperties: false`. Raises ToolExecutionError listing every
    problem found.
    """
    properties: dict[str, Any] = schema.get("properties") or {}
    problems: list[str] = []

    missing = [key for key in schema.get("required") or [] if key not in arguments]
    if missing:
        problems.append(f"missing required argument(s): {', '.join(missing)}")

    if schema.get("additionalProperties") is False:
        unexpected = sorted(key for key in arguments if key not in properties)
        if unexpected:
            problems.append(f"unexpected argument(s): {', '.join(unexpected)}")

    for key, value in arguments.items():
        prop = properties.get(key)
        if not prop or value is None:
            continue
        expected = prop.get("type")
        accepted = _JSON_TYPES.get(expected) if isinstance(expected, str) else None
        if accepted is not None:
            if isinstance(value, bool) and expected in ("integer", "number"):
                problems.append(f"{key} must be {expected}, got boolean")
                continue
            if not isinstance(value, accepted):
                problems.append(f"{key} must be {expected}, got {type(value).__name__}")
                continue
        if prop.get("enum") and value not in prop["enum"]:
            problems.append(f"{key} must be one of {prop['enum']}")

    if problems:
        raise ToolExecutionError(f"invalid arguments for {name}: {'; '.join(problems)}")


class BaseTool(ABC):
    """Base class for class-based tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """Get the tool parameters schema (JSON Schema)."""

    @abstractmethod
    async def run(self, **kwargs: Any) -> str:
        """Run the tool and return its output. Raise to report failure."""

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, parameters=self.parameters)

    def validate(self, arguments: dict[str, Any]) -> None:
        validate_arguments(self.name, self.parameters, arguments)


def _schema_for(annotation: Any) -> dict[str, Any]:
    if get_origin(annotation) is Annotated:
        base, *extras = get_args(annotation)
        schema = _schema_for(base)
        description = next((e for e in extras if isinstance(e, str)), None)
        if description:
            schema["description"] = description
        return schema

    args = [a for a in get_args(annotation) if a is not _NoneType]
    if get_origin(annotation) is Union or (args and type(annotation).__name__ == "UnionType"):
        return _schema_for(args[0]) if len(args) == 1 else {"type": "string"}

    if annotation is bool:
        return {"type": "boolean"}
    if annotation is int:
        return {"type": "integer"}
    if annotation is float:
        return {"type": "number"}
    if annotation is list or get_origin(annotation) is list:
        schema: dict[str, Any] = {"type": "array"}
        if args:
            schema["items"] = _schema_for(args[0])
        return schema
    if annotation is dict or get_origin(annotation) is dict:
        return {"type": "object"}
    return {"type": "string"}


class FunctionTool(BaseTool):
    """A tool built from an async function.

    The parameter schema comes from the signature: parameters without a
    default are required, and `Annotated[T, "text"]` supplies descriptions.
    """

    def __init__(self, func: Callable[..., Awaitable[Any]], name: str = "", description: str = ""):
        self._func = func
        self._name = name or func.__name__
        self._description = description or inspect.getdoc(func) or ""
        self._parameters = self._build_schema(func)

    @staticmethod
    def _build_schema(func: Callable[..., Any]) -> dict[str, Any]:
        hints = get_type_hints(func, include_extras=True)
        properties: dict[str, Any] = {}
        required: list[str] = []

        for param in inspect.signature(func).parameters.values():
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            properties[param.name] = _schema_for(hints.get(param.name, str))
            if param.default is inspect.Parameter.empty:
                required.append(param.name)

        return {"type": "object", "properties": properties, "required": required}

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict[str, Any]:
        return self._parameters

    async def run(self, **kwargs: Any) -> str:
        result = await self._func(**kwargs)
        return "" if result is None else str(result)


def tool(func: Callable[..., Awaitable[Any]] | None = None, *, name: str = "", description: str = ""):
    """Decorator turning an async function into a FunctionTool.

    Usable bare (`@tool`) or with overrides (`@tool(name="shell")`).
    """
    def wrap(f: Callable[..., Awaitable[Any]]) -> FunctionTool:
        return FunctionTool(f, name=name, description=description)

    if func is not None:
        return wrap(func)
    return wrap
