"""Request field types shared by the tool models."""

from typing import Annotated

from pydantic import AfterValidator


def _utf8_encodable(value: str) -> str:
    # JSON "\ud800" escapes decode to lone surrogates that cannot be echoed back
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        raise ValueError("Text contains an unpaired surrogate character") from None
    return value


Utf8Str = Annotated[str, AfterValidator(_utf8_encodable)]
