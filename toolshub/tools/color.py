"""HEX <-> RGB(A) colour converter."""

import re
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from toolshub.tools.fields import Utf8Str

_HEX_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)


class ColorInput(BaseModel):
    hex: Optional[Utf8Str] = Field(None, description="HEX colour code, e.g. #FF6B6B")
    r: Optional[int] = Field(None, description="Red (0-255)")
    g: Optional[int] = Field(None, description="Green (0-255)")
    b: Optional[int] = Field(None, description="Blue (0-255)")
    alpha: Optional[float] = Field(None, description="Alpha (0-1)")

    @model_validator(mode="after")
    def _hex_or_rgb(self):
        if not self.hex and (self.r is None or self.g is None or self.b is None):
            raise ValueError("Provide either hex or RGB values (r, g, b)")
        return self


def _clamp(value, low, high):
    return max(low, min(high, value))


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def convert_color(body: ColorInput) -> dict:
    r = body.r if body.r is not None else 255
    g = body.g if body.g is not None else 107
    b = body.b if body.b is not None else 107
    alpha = body.alpha if body.alpha is not None else 1

    match = _HEX_RE.match(body.hex) if body.hex else None
    if match:
        r, g, b = (int(part, 16) for part in match.groups())
        hex_value = body.hex
    elif body.hex:
        hex_value = body.hex
    else:
        hex_value = "#" + "".join(f"{_clamp(c, 0, 255):02X}" for c in (r, g, b))

    r, g, b = (_clamp(c, 0, 255) for c in (r, g, b))
    alpha = _clamp(alpha, 0, 1)

    return {
        "input": body.model_dump(exclude_none=True),
        "hex": hex_value,
        "rgb": f"rgb({r}, {g}, {b})",
        "rgba": f"rgba({r}, {g}, {b}, {_fmt(alpha)})",
        "colors": {"r": r, "g": g, "b": b, "alpha": alpha},
    }
