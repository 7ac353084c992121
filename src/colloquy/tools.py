from __future__ import annotations

import asyncio
import inspect
import json
import logging
import re
import types
import typing
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from colloquy.context import ToolContext
from colloquy.errors import ToolExecutionFailure
from colloquy.message import Attachment

logger = logging.getLogger(__name__)

_TOOL_NAME = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")

# parameters filled in by the dispatcher, never by the model
_INJECTED_PARAMS = ("context",)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass
class TextResult:
    """Text handed back to the model."""

    content: str


@dataclass
class DataResult:
    """Files produced by the tool, recorded as a data turn."""

    attachments: list[Attachment] = field(default_factory=list)
    content: str = ""


@dataclass
class ChoiceResult:
    """Ambiguous candidates; the chain waits for the user to pick one."""

    options: list[str] = field(default_factory=list)
    prompt: str = ""


@dataclass
class Failure:
    """The tool ran but could not produce a result."""

    reason: str


ToolOutcome = TextResult | DataResult | ChoiceResult | Failure


def _to_outcome(output: Any) -> ToolOutcome:
    if isinstance(output, (TextResult, DataResult, ChoiceResult, Failure)):
        return output
    if output is None:
        return TextResult(content="")
    if isinstance(output, str):
        return TextResult(content=output)
    if isinstance(output, Attachment):
        return DataResult(attachments=[output])
    if isinstance(output, BaseModel):
        return TextResult(content=output.model_dump_json())
    return TextResult(content=json.dumps(output, default=str))


async def join_all(*operations: Awaitable[Any]) -> list[Any]:
    """Await every operation, then fail if any of them failed.

    Partial results are never returned: either all operations succeed or
    a :class:`ToolExecutionFailure` describing every failure is raised
    after all of them have finished.
    """
    results = await asyncio.gather(*operations, return_exceptions=True)
    errors = [r for r in results if isinstance(r, BaseException)]
    for error in errors:
        if isinstance(error, asyncio.CancelledError):
            raise error
    if errors:
        reasons = "; ".join(str(e) or type(e).__name__ for e in errors)
        raise ToolExecutionFailure(
            f"{len(errors)} of {len(results)} operations failed: {reasons}"
        )
    return results


# ---------------------------------------------------------------------------
# Schema generation
# ---------------------------------------------------------------------------

_JSON_TYPES = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    tuple: "array",
    set: "array",
    dict: "object",
    type(None): "null",
}


def _unwrap_optional(annotation: Any) -> Any:
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if args:
            return args[0]
    return annotation


def _json_type(annotation: Any) -> dict:
    annotation = _unwrap_optional(annotation)
    origin = typing.get_origin(annotation) or annotation
    if isinstance(origin, type) and issubclass(origin, BaseModel):
        return {"type": "object"}
    prop = {"type": _JSON_TYPES.get(origin, "string")}
    if prop["type"] == "array":
        args = typing.get_args(annotation)
        prop["items"] = _json_type(args[0]) if args else {"type": "string"}
    return prop


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Extract per-parameter descriptions from a docstring.

    Understands Google (``Args:``), Sphinx (``:param x:``) and NumPy
    (``Parameters`` + dashes) layouts.
    """
    doc = inspect.getdoc(func)
    if not doc:
        return {}
    lines = doc.splitlines()

    sphinx = {}
    for match in re.finditer(r":param\s+(?:\w+\s+)?(\w+):\s*(.+)", doc):
        sphinx[match.group(1)] = match.group(2).strip()
    if sphinx:
        return sphinx

    descriptions: dict[str, str] = {}
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:"):
            descriptions = _parse_google_section(lines[i + 1:])
            break
        if stripped == "Parameters" and i + 1 < len(lines) and set(lines[i + 1].strip()) == {"-"}:
            descriptions = _parse_numpy_section(lines[i + 2:])
            break
    return descriptions


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def _parse_google_section(lines: list[str]) -> dict[str, str]:
    descriptions: dict[str, list[str]] = {}
    current = None
    base = None
    for line in lines:
        if not line.strip():
            continue
        if base is None:
            base = _indent(line)
        if _indent(line) < base:
            break
        match = re.match(r"\s*(\w+)(?:\s*\([^)]*\))?:\s*(.*)", line)
        if _indent(line) == base and match:
            current = match.group(1)
            descriptions[current] = [match.group(2).strip()]
        elif current is not None and _indent(line) > base:
            descriptions[current].append(line.strip())
        else:
            break
    return {k: "\n".join(v) for k, v in descriptions.items()}


def _parse_numpy_section(lines: list[str]) -> dict[str, str]:
    descriptions: dict[str, list[str]] = {}
    current = None
    base = None
    for line in lines:
        if not line.strip():
            continue
        if base is None:
            base = _indent(line)
        if _indent(line) == base:
            match = re.match(r"\s*(\w+)\s*(?::.*)?$", line)
            if not match:
                break
            current = match.group(1)
            descriptions[current] = []
        elif current is not None:
            descriptions[current].append(line.strip())
    return {k: "\n".join(v) for k, v in descriptions.items() if v}


def _resolve_annotation(annotation: Any) -> Any:
    # strings left over are forward references get_type_hints could not resolve
    if isinstance(annotation, str):
        return Any
    return annotation


def _signature_params(func: Callable) -> list[tuple[inspect.Parameter, Any]]:
    try:
        hints = typing.get_type_hints(func)
    except (NameError, TypeError):
        hints = {}
    params = []
    for name, param in inspect.signature(func).parameters.items():
        if name in _INJECTED_PARAMS:
            continue
        annotation = hints.get(name, param.annotation)
        params.append((param, _resolve_annotation(annotation)))
    return params


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    """Build a JSON schema for ``func``'s model-facing parameters."""
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for param, annotation in _signature_params(func):
        prop = _json_type(annotation)
        prop["description"] = descriptions.get(param.name, "")
        properties[param.name] = prop
        if param.default is inspect.Parameter.empty:
            required.append(param.name)
    schema = {"type": "object", "properties": properties, "required": required}
    return schema, required


def _build_arguments_model(name: str, func: Callable) -> type[BaseModel]:
    fields = {}
    for param, annotation in _signature_params(func):
        if annotation is inspect.Parameter.empty:
            annotation = Any
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[param.name] = (annotation, default)
    return create_model(
        f"{name}_arguments",
        __config__=ConfigDict(extra="ignore"),
        **fields,
    )


# ---------------------------------------------------------------------------
# Tool
# ---------------------------------------------------------------------------

class Tool(BaseModel):
    """A callable the model can request by name.

    The function may be sync or async and may declare a ``context``
    parameter to receive the :class:`~colloquy.context.ToolContext`.
    Its other parameters define the argument schema.
    """

    func: Callable = Field(exclude=True)
    name: str
    description: str = ""
    parameters_schema: dict
    arguments_model: type[BaseModel] = Field(exclude=True)
    model_config = {"arbitrary_types_allowed": True}

    def model_dump(self, **kwargs):
        """Return the OpenAI-compatible function tool schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    def model_dump_json(self, **kwargs):
        return json.dumps(self.model_dump())

    @property
    def wants_context(self) -> bool:
        return "context" in inspect.signature(self.func).parameters

    async def __call__(self, context: ToolContext, arguments: BaseModel) -> ToolOutcome:
        params = {k: getattr(arguments, k) for k in type(arguments).model_fields}
        if self.wants_context:
            params["context"] = context
        output = self.func(**params)
        if inspect.isawaitable(output):
            output = await output
        return _to_outcome(output)


def tool(
    func: Callable | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    arguments_model: type[BaseModel] | None = None,
):
    """Turn a function into a :class:`Tool`.

    Usable bare (``@tool``) or with overrides
    (``@tool(name="search", description="...")``).
    """

    def wrap(f: Callable) -> Tool:
        tool_name = name or f.__name__
        if arguments_model is not None:
            schema = arguments_model.model_json_schema()
            model = arguments_model
        else:
            schema, _ = _build_parameters_schema(f)
            model = _build_arguments_model(tool_name, f)
        doc = inspect.getdoc(f) or ""
        return Tool(
            func=f,
            name=tool_name,
            description=description if description is not None else doc.split("\n\n")[0],
            parameters_schema=schema,
            arguments_model=model,
        )

    if func is not None:
        return wrap(func)
    return wrap


# ---------------------------------------------------------------------------
# Dispatch table
# ---------------------------------------------------------------------------

class ToolDispatchTable:
    """Registry of tools keyed by identifier.

    ``execute`` always produces exactly one outcome and never raises:
    unknown tools, undecodable arguments and executor exceptions all
    become :class:`Failure` values.

    Args:
        tools: Tools to register up front.
    """

    def __init__(self, tools: Iterable[Tool] = ()):
        self._tools: dict[str, Tool] = {}
        for t in tools:
            self.register(t)

    def register(self, t: Tool) -> Tool:
        if not _TOOL_NAME.match(t.name):
            raise ValueError(f"invalid tool name {t.name!r}")
        if t.name in self._tools:
            raise ValueError(f"tool {t.name!r} is already registered")
        if t.parameters_schema.get("type") != "object":
            raise ValueError(f"tool {t.name!r} parameters must be a JSON object schema")
        self._tools[t.name] = t
        return t

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def schemas(self) -> list[dict]:
        return [t.model_dump() for t in self._tools.values()]

    async def execute(
        self, name: str, raw_arguments: str, context: ToolContext,
    ) -> ToolOutcome:
        tool_obj = self._tools.get(name)
        if tool_obj is None:
            logger.warning(f"Tool not found: {name}")
            return Failure(reason=f"tool '{name}' not found")

        try:
            arguments = tool_obj.arguments_model.model_validate_json(
                raw_arguments.strip() or "{}"
            )
        except ValidationError as e:
            logger.warning(f"Invalid arguments for {name}: {e}")
            return Failure(reason=f"invalid arguments for {name}: {e}")

        logger.info(f"Calling {name} with {arguments}")
        try:
            return await tool_obj(context, arguments)
        except ToolExecutionFailure as e:
            logger.info(f"Tool {name} failed: {e}")
            return Failure(reason=str(e))
        except Exception as e:
            logger.exception(f"Tool {name} raised: {e}")
            return Failure(reason=f"Error calling {name}: {e}")
