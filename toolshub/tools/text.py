"""Text tools: word counter, case converter, slug generator."""

import re

from pydantic import BaseModel, Field

from toolshub.tools.fields import Utf8Str


class TextInput(BaseModel):
    text: Utf8Str = Field(..., min_length=1, description="Input text")


class SlugInput(TextInput):
    separator: Utf8Str = Field("-", min_length=1, max_length=3, description="Separator (default: -)")


def count_words(body: TextInput) -> dict:
    text = body.text
    has_content = bool(text.strip())
    return {
        "input": text,
        "characters": len(text),
        "charactersNoSpaces": len(re.sub(r"\s", "", text)),
        "words": len(text.split()) if has_content else 0,
        "sentences": len(re.findall(r"[.!?]+", text)) if has_content else 0,
        "paragraphs": len(re.split(r"\n\n+", text)) if has_content else 0,
        "lines": len(text.split("\n")) if has_content else 0,
    }


def _camel_case(text: str) -> str:
    words = re.split(r"[\s_-]+", text)
    head, tail = words[0].lower(), words[1:]
    return head + "".join(w[:1].upper() + w[1:].lower() for w in tail)


def convert_case(body: TextInput) -> dict:
    text = body.text
    lowered = text.lower()
    return {
        "text": text,
        "lowercase": lowered,
        "uppercase": text.upper(),
        "capitalize": " ".join(w[:1].upper() + w[1:] for w in text.split(" ")),
        "toggleCase": "".join(c.lower() if c == c.upper() else c.upper() for c in text),
        "camelCase": _camel_case(text),
        "snakeCase": re.sub(r"[^\w]", "", re.sub(r"\s+", "_", lowered), flags=re.ASCII),
        "kebabCase": re.sub(r"[^\w-]", "", re.sub(r"\s+", "-", lowered), flags=re.ASCII),
    }


def slugify(text: str, separator: str = "-") -> str:
    sep = re.escape(separator)
    slug = text.strip().lower()
    slug = re.sub(r"[^\w\s-]", "", slug, flags=re.ASCII)
    slug = re.sub(r"\s+", separator.replace("\\", "\\\\"), slug)
    slug = re.sub(f"(?:{sep}){{2,}}", separator.replace("\\", "\\\\"), slug)
    return re.sub(f"^(?:{sep})+|(?:{sep})+$", "", slug)


def create_slug(body: SlugInput) -> dict:
    slug = slugify(body.text, body.separator)
    return {"slug": slug, "length": len(slug), "original": body.text}
