"""
Tool registry.

Each tool is a pure function over a validated pydantic request model. The
registry is what the /api/tools router and the billing pipeline look tools
up in; costs come from toolshub.pricing.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel

from toolshub.pricing import get_tool_cost
from toolshub.tools.color import ColorInput, convert_color
from toolshub.tools.encoding import ConvertInput, JsonInput, convert_base64, convert_url, format_json
from toolshub.tools.password import PasswordInput, generate_password
from toolshub.tools.text import SlugInput, TextInput, convert_case, count_words, create_slug


@dataclass(frozen=True)
class ToolDefinition:
    tool_id: str
    name: str
    description: str
    request_model: Type[BaseModel]
    handler: Callable[[BaseModel], dict]
    outputs: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def endpoint(self) -> str:
        return f"/api/tools/{self.tool_id}"

    def parameters(self) -> dict:
        """Request fields as {name: {type, required, description}} from the model's JSON schema."""
        schema = self.request_model.model_json_schema(by_alias=True)
        required = set(schema.get("required", []))
        params = {}
        for name, prop in schema.get("properties", {}).items():
            kind = prop.get("type")
            if kind is None:
                kinds = [p.get("type") for p in prop.get("anyOf", []) if p.get("type") != "null"]
                kind = kinds[0] if kinds else "string"
            entry = {"type": kind, "required": name in required}
            if "description" in prop:
                entry["description"] = prop["description"]
            if "default" in prop and prop["default"] is not None:
                entry["default"] = prop["default"]
            if "enum" in prop:
                entry["enum"] = prop["enum"]
            params[name] = entry
        return params

    def describe(self) -> dict:
        return {
            "id": self.tool_id,
            "name": self.name,
            "description": self.description,
            "endpoint": self.endpoint,
            "method": "POST",
            "costPerCall": float(get_tool_cost(self.tool_id)),
            "parameters": self.parameters(),
            "outputs": list(self.outputs),
        }


_TOOLS: List[ToolDefinition] = [
    ToolDefinition(
        tool_id="word-counter",
        name="Word Counter",
        description="Count characters, words, sentences, paragraphs, and lines in text",
        request_model=TextInput,
        handler=count_words,
        outputs=("characters", "charactersNoSpaces", "words", "sentences", "paragraphs", "lines"),
    ),
    ToolDefinition(
        tool_id="json-formatter",
        name="JSON Formatter",
        description="Format, validate and minify JSON",
        request_model=JsonInput,
        handler=format_json,
        outputs=("formatted", "minified", "isValid", "stats"),
    ),
    ToolDefinition(
        tool_id="case-converter",
        name="Case Converter",
        description="Convert text between lowercase, UPPERCASE, camelCase, snake_case and more",
        request_model=TextInput,
        handler=convert_case,
        outputs=("lowercase", "uppercase", "capitalize", "toggleCase", "camelCase", "snakeCase", "kebabCase"),
    ),
    ToolDefinition(
        tool_id="slug-generator",
        name="Slug Generator",
        description="Create URL-friendly slugs from text",
        request_model=SlugInput,
        handler=create_slug,
        outputs=("slug", "length", "original"),
    ),
    ToolDefinition(
        tool_id="url-encoder",
        name="URL Encoder/Decoder",
        description="Percent-encode or decode URL components",
        request_model=ConvertInput,
        handler=convert_url,
        outputs=("success", "result", "size"),
    ),
    ToolDefinition(
        tool_id="base64-converter",
        name="Base64 Encoder/Decoder",
        description="Encode text to Base64 or decode Base64 to text",
        request_model=ConvertInput,
        handler=convert_base64,
        outputs=("success", "result", "size"),
    ),
    ToolDefinition(
        tool_id="hex-rgba-converter",
        name="HEX to RGBA Converter",
        description="Convert HEX colour codes to RGB/RGBA and back",
        request_model=ColorInput,
        handler=convert_color,
        outputs=("hex", "rgb", "rgba", "colors"),
    ),
    ToolDefinition(
        tool_id="password-generator",
        name="Password Generator",
        description="Generate cryptographically random passwords with a strength rating",
        request_model=PasswordInput,
        handler=generate_password,
        outputs=("password", "strength", "metrics"),
    ),
]

TOOL_REGISTRY: Dict[str, ToolDefinition] = {tool.tool_id: tool for tool in _TOOLS}


def get_tool(tool_id: str) -> Optional[ToolDefinition]:
    return TOOL_REGISTRY.get(tool_id)


def list_tools() -> List[ToolDefinition]:
    return list(_TOOLS)
