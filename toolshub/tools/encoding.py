"""Encoding tools: JSON formatter, URL encoder, Base64 converter."""

import base64
import binascii
import json
from typing import Literal
from urllib.parse import quote, unquote

from pydantic import BaseModel, ConfigDict, Field

from toolshub.tools.fields import Utf8Str


class JsonInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    json_text: Utf8Str = Field(..., alias="json", min_length=1, description="JSON string to format")


class ConvertInput(BaseModel):
    text: Utf8Str = Field(..., min_length=1, description="Input text")
    mode: Literal["encode", "decode"] = Field("encode", description="encode or decode")


def _invalid_json(message: str) -> dict:
    return {"formatted": "", "minified": "", "isValid": False, "error": message}


def format_json(body: JsonInput) -> dict:
    try:
        parsed = json.loads(body.json_text)
        formatted = json.dumps(parsed, indent=2, ensure_ascii=False)
        minified = json.dumps(parsed, separators=(",", ":"), ensure_ascii=False)
        formatted.encode("utf-8")
    except RecursionError:
        return _invalid_json("JSON is nested too deeply")
    except UnicodeEncodeError:
        return _invalid_json("JSON contains an unpaired surrogate escape")
    except ValueError as exc:
        # JSONDecodeError, or an integer literal past the digit limit
        return _invalid_json(str(exc))

    return {
        "formatted": formatted,
        "minified": minified,
        "isValid": True,
        "stats": {"size": len(formatted), "minifiedSize": len(minified)},
    }


def _conversion(original: str, result: str) -> dict:
    return {
        "success": True,
        "result": result,
        "size": {"original": len(original), "converted": len(result)},
    }


def _failed_conversion(message: str) -> dict:
    return {
        "success": False,
        "error": message,
        "result": "",
        "size": {"original": 0, "converted": 0},
    }


def convert_url(body: ConvertInput) -> dict:
    if body.mode == "encode":
        return _conversion(body.text, quote(body.text, safe="-_.!~*'()"))
    try:
        return _conversion(body.text, unquote(body.text, errors="strict"))
    except UnicodeDecodeError:
        return _failed_conversion("Invalid URL encoding")


def convert_base64(body: ConvertInput) -> dict:
    if body.mode == "encode":
        return _conversion(body.text, base64.b64encode(body.text.encode("utf-8")).decode("ascii"))
    padded = body.text.strip() + "=" * (-len(body.text.strip()) % 4)
    try:
        decoded = base64.b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return _failed_conversion("Invalid Base64 input")
    return _conversion(body.text, decoded)
