"""
JSON Schema → parameter shape translation for MCP tool inputs.

Only the flat subset MCP servers actually publish is understood:
top-level ``properties`` with a primitive ``type``, an optional
``description`` and the ``required`` list. Composition keywords
(oneOf/allOf/$ref) are not interpreted. Anything malformed degrades to an
unconstrained ANY parameter instead of raising, so a tool stays callable
with partial schema information.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, create_model


class ParamType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    ANY = "any"


_PYTHON_TYPES: dict[ParamType, Any] = {
    ParamType.STRING: str,
    ParamType.NUMBER: Union[int, float],
    ParamType.BOOLEAN: bool,
    ParamType.ARRAY: list[Any],
    ParamType.OBJECT: dict[str, Any],
    ParamType.ANY: Any,
}


@dataclass(frozen=True)
class Parameter:
    name: str
    type: ParamType = ParamType.ANY
    required: bool = False
    description: str | None = None

    @property
    def python_type(self) -> Any:
        return _PYTHON_TYPES[self.type]


@dataclass(frozen=True)
class ParameterShape:
    """Ordered, typed parameters of one tool."""
    parameters: tuple[Parameter, ...] = ()

    def __iter__(self):
        return iter(self.parameters)

    def __len__(self) -> int:
        return len(self.parameters)

    def get(self, name: str) -> Parameter | None:
        return next((p for p in self.parameters if p.name == name), None)

    @property
    def required(self) -> list[str]:
        return [p.name for p in self.parameters if p.required]

    def to_pydantic(self, model_name: str = "ToolInput") -> type[BaseModel]:
        """
        Build a pydantic model for host function calling (e.g. LangChain args_schema).

        Property names that are not usable as field names (leading underscore,
        not an identifier, shadowing a BaseModel attribute) are kept as
        aliases of a generated field name.
        """
        fields: dict[str, Any] = {}
        for index, param in enumerate(self.parameters):
            field_name = param.name
            alias = None
            if (not field_name.isidentifier() or field_name.startswith("_")
                    or hasattr(BaseModel, field_name)):
                field_name, alias = f"param_{index}", param.name

            if param.required:
                annotation = param.python_type
                default = Field(..., description=param.description, alias=alias)
            else:
                annotation = Optional[param.python_type]
                default = Field(None, description=param.description, alias=alias)
            fields[field_name] = (annotation, default)

        return create_model(
            model_name,
            __config__=ConfigDict(populate_by_name=True),
            **fields,
        )


def _param_type(spec: Any) -> ParamType:
    if not isinstance(spec, dict):
        return ParamType.ANY
    raw = spec.get("type")
    if not isinstance(raw, str):
        return ParamType.ANY
    try:
        return ParamType(raw)
    except ValueError:
        return ParamType.ANY


def translate(schema: Any) -> ParameterShape:
    """
    Translate a tool's inputSchema into a ParameterShape. Never raises.

    >>> shape = translate({"type": "object",
    ...                    "properties": {"path": {"type": "string"}},
    ...                    "required": ["path"]})
    >>> shape.get("path").required
    True
    """
    if not isinstance(schema, dict):
        return ParameterShape()

    properties = schema.get("properties")
    if not isinstance(properties, dict):
        return ParameterShape()

    required = schema.get("required")
    if not isinstance(required, (list, tuple)):
        required = ()

    params = []
    for name, spec in properties.items():
        description = spec.get("description") if isinstance(spec, dict) else None
        params.append(Parameter(
            name=str(name),
            type=_param_type(spec),
            required=name in required,
            description=description if isinstance(description, str) else None,
        ))

    return ParameterShape(tuple(params))
