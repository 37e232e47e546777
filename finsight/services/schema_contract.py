"""Versioned descriptors of the structures the generation service must return.

A single ``SchemaContract`` instance is used both to build the
``response_format`` sent with a request and to validate what comes back, so
the two cannot drift apart.
"""

from dataclasses import dataclass
from dataclasses import field
from typing import Any

from pydantic import BaseModel

from finsight.models.report_models import DynamicChart
from finsight.models.report_models import PatchResult
from finsight.models.report_models import Report

# Keywords rejected (or ignored) by strict structured-output mode.
# Bounds are still enforced by the pydantic model on the way back in.
_UNSUPPORTED_KEYWORDS = frozenset(
    {"title", "default", "minimum", "maximum", "minItems", "maxItems", "minLength", "maxLength"}
)
# Keys whose values map names to sub-schemas rather than holding keywords
_NAMED_SCHEMA_KEYS = ("properties", "$defs")


def _strictify(node: Any) -> Any:
    """Make a pydantic JSON schema acceptable to strict structured-output mode.

    Every object gets ``additionalProperties: false`` and lists all of its
    properties as required. Optional model fields are already emitted as
    ``anyOf [..., null]`` so they stay nullable.
    """
    if isinstance(node, list):
        return [_strictify(item) for item in node]
    if not isinstance(node, dict):
        return node

    out: dict[str, Any] = {}
    for key, value in node.items():
        if key in _UNSUPPORTED_KEYWORDS:
            continue
        if key in _NAMED_SCHEMA_KEYS:
            out[key] = {name: _strictify(sub) for name, sub in value.items()}
        else:
            out[key] = _strictify(value)

    if out.get("type") == "object" and "properties" in out:
        out["required"] = list(out["properties"])
        out["additionalProperties"] = False
    return out


def _collect_refs(node: Any, refs: set[str]) -> None:
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str) and ref.startswith("#/$defs/"):
            refs.add(ref.removeprefix("#/$defs/"))
        for value in node.values():
            _collect_refs(value, refs)
    elif isinstance(node, list):
        for item in node:
            _collect_refs(item, refs)


def _prune_defs(schema: dict[str, Any]) -> dict[str, Any]:
    """Drop $defs entries no longer reachable from the root schema."""
    defs = schema.get("$defs")
    if not defs:
        return schema

    root = {k: v for k, v in schema.items() if k != "$defs"}
    reachable: set[str] = set()
    _collect_refs(root, reachable)
    pending = list(reachable)
    while pending:
        name = pending.pop()
        found: set[str] = set()
        _collect_refs(defs.get(name, {}), found)
        for ref in found - reachable:
            reachable.add(ref)
            pending.append(ref)

    if reachable:
        root["$defs"] = {name: sub for name, sub in defs.items() if name in reachable}
    return root


@dataclass(frozen=True)
class SchemaContract:
    """Declarative description of one expected response shape.

    Attributes:
        name: Identifier sent to the generation service.
        version: Bumped whenever the shape changes incompatibly.
        model: Pydantic model that validates responses.
        strict: Use schema-enforced structured output; otherwise plain JSON mode.
        wire_exclude: Top-level properties left out of the request schema but
            still accepted by the validator.
    """

    name: str
    version: int
    model: type[BaseModel]
    strict: bool = True
    wire_exclude: frozenset[str] = field(default_factory=frozenset)

    @property
    def qualified_name(self) -> str:
        return f"{self.name}_v{self.version}"

    def required_fields(self) -> list[str]:
        """Wire names of the mandatory top-level fields."""
        return [info.alias or name for name, info in self.model.model_fields.items() if info.is_required()]

    def field_names(self) -> list[str]:
        return [info.alias or name for name, info in self.model.model_fields.items()]

    def json_schema(self) -> dict[str, Any]:
        schema = self.model.model_json_schema(by_alias=True)
        if self.wire_exclude:
            schema["properties"] = {k: v for k, v in schema["properties"].items() if k not in self.wire_exclude}
            schema["required"] = [k for k in schema.get("required", []) if k not in self.wire_exclude]
            schema = _prune_defs(schema)
        return _strictify(schema) if self.strict else schema

    def response_format(self) -> dict[str, Any]:
        """The ``response_format`` argument for an OpenAI-compatible chat completion."""
        if not self.strict:
            return {"type": "json_object"}
        return {
            "type": "json_schema",
            "json_schema": {
                "name": self.qualified_name,
                "strict": True,
                "schema": self.json_schema(),
            },
        }

    def validate(self, data: Any) -> BaseModel:
        """Validate parsed JSON against the model. Raises pydantic.ValidationError."""
        return self.model.model_validate(data)


ANALYSIS_CONTRACT = SchemaContract(
    name="financial_report",
    version=1,
    model=Report,
    strict=True,
    wire_exclude=frozenset({"customSections"}),
)

PATCH_CONTRACT = SchemaContract(
    name="report_patch",
    version=1,
    model=PatchResult,
    strict=False,
)

# Shape of a chart usable inside a custom section, quoted in chat prompts
CHART_CONTRACT = SchemaContract(
    name="dynamic_chart",
    version=1,
    model=DynamicChart,
    strict=False,
)
