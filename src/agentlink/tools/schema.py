"""Parameter schemas of remote tools.

A tool declares its parameters as a JSON schema object. `ToolSchema` turns
that into an ordered tuple of `ParameterSpec` values, which the inference
engine works from, and derives two artifacts from it: a pydantic model for
validating argument sets, and the function descriptor handed to the
language model.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, create_model

from agentlink.types import InputSchema, Tool

ParameterType = Literal["string", "number", "integer", "boolean", "array", "object", "any"]

FREE_TEXT_PARAMETER = "input"

_PYTHON_TYPES: dict[str, Any] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
    "array": list[Any],
    "object": dict[str, Any],
}


class ArgumentModelBase(BaseModel):
    """Base for generated argument models. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid", populate_by_name=False)


@dataclass(frozen=True)
class ParameterSpec:
    """One declared parameter of a tool."""

    name: str
    type: ParameterType = "any"
    description: str = ""
    enum: tuple[str, ...] | None = None
    required: bool = False
    property_schema: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_numeric(self) -> bool:
        return self.type in ("number", "integer")

    @classmethod
    def from_property(cls, name: str, prop: Any, required: bool) -> ParameterSpec:
        prop = prop if isinstance(prop, dict) else {}
        declared = prop.get("type")
        param_type: ParameterType = declared if declared in _PYTHON_TYPES else "any"
        enum = prop.get("enum")
        if isinstance(enum, list) and enum:
            enum_values: tuple[str, ...] | None = tuple(str(value) for value in enum)
        else:
            enum_values = None
        return cls(
            name=name,
            type=param_type,
            description=str(prop.get("description") or ""),
            enum=enum_values,
            required=required,
            property_schema=dict(prop),
        )


@dataclass(frozen=True)
class ToolSchema:
    """The ordered parameters of one tool.

    `declared` is False when the tool declares no parameters, in which case
    a single optional free-text parameter named `input` stands in.
    """

    parameters: tuple[ParameterSpec, ...]
    declared: bool = True

    @classmethod
    def from_input_schema(cls, schema: InputSchema | dict[str, Any] | None) -> ToolSchema:
        if schema is None:
            schema = InputSchema()
        elif isinstance(schema, dict):
            schema = InputSchema.model_validate(schema)

        properties = schema.properties or {}
        required = set(schema.required or [])
        if not properties:
            free_text = ParameterSpec(
                name=FREE_TEXT_PARAMETER,
                type="string",
                description="Input for the tool",
                property_schema={"type": "string", "description": "Input for the tool"},
            )
            return cls(parameters=(free_text,), declared=False)

        return cls(
            parameters=tuple(
                ParameterSpec.from_property(name, prop, name in required) for name, prop in properties.items()
            )
        )

    @classmethod
    def from_tool(cls, tool: Tool) -> ToolSchema:
        return cls.from_input_schema(tool.input_schema)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(p.name for p in self.parameters)

    @property
    def required(self) -> tuple[ParameterSpec, ...]:
        return tuple(p for p in self.parameters if p.required)

    def get(self, name: str) -> ParameterSpec | None:
        return next((p for p in self.parameters if p.name == name), None)

    def of_type(self, *types: ParameterType) -> tuple[ParameterSpec, ...]:
        return tuple(p for p in self.parameters if p.type in types)

    def argument_model(self, name: str = "Arguments") -> type[ArgumentModelBase]:
        """Build a pydantic model that validates an argument set structurally.

        Parameter names become field aliases, so names that are not valid
        Python identifiers (or clash with BaseModel attributes) still work.
        Dump with `by_alias=True` to get the wire names back.
        """
        fields: dict[str, Any] = {}
        for index, param in enumerate(self.parameters):
            annotation = _PYTHON_TYPES.get(param.type, Any)
            if param.required:
                fields[f"param_{index}"] = (annotation, Field(alias=param.name, description=param.description))
            else:
                fields[f"param_{index}"] = (
                    annotation | None,
                    Field(default=None, alias=param.name, description=param.description),
                )
        return create_model(name, __base__=ArgumentModelBase, **fields)

    def to_json_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        for param in self.parameters:
            if param.property_schema:
                properties[param.name] = dict(param.property_schema)
                continue
            prop: dict[str, Any] = {}
            if param.type != "any":
                prop["type"] = param.type
            if param.description:
                prop["description"] = param.description
            if param.enum:
                prop["enum"] = list(param.enum)
            properties[param.name] = prop
        schema: dict[str, Any] = {"type": "object", "properties": properties}
        required = [p.name for p in self.parameters if p.required]
        if required:
            schema["required"] = required
        return schema


def function_descriptor(tool: Tool, schema: ToolSchema | None = None) -> dict[str, Any]:
    """Describe a tool in the OpenAI function-calling format."""
    schema = schema or ToolSchema.from_tool(tool)
    return {
        "type": "function",
        "function": {
            "name": tool.name,
            "description": tool.description,
            "parameters": schema.to_json_schema(),
        },
    }
