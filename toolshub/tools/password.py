"""Password generator (cryptographically random)."""

import re
import secrets
import string

from pydantic import BaseModel, ConfigDict, Field, model_validator

SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"
_SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{}|;:,.<>?]")


class PasswordInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    length: int = Field(16, ge=4, le=128)
    use_uppercase: bool = Field(True, alias="useUppercase")
    use_lowercase: bool = Field(True, alias="useLowercase")
    use_numbers: bool = Field(True, alias="useNumbers")
    use_special_chars: bool = Field(True, alias="useSpecialChars")

    @model_validator(mode="after")
    def _at_least_one_class(self):
        if not (self.use_uppercase or self.use_lowercase or self.use_numbers or self.use_special_chars):
            raise ValueError("At least one character type must be selected")
        return self


def password_strength(password: str) -> tuple[str, int]:
    score = sum([
        len(password) >= 8,
        len(password) >= 12,
        len(password) >= 16,
        bool(re.search(r"[a-z]", password)),
        bool(re.search(r"[A-Z]", password)),
        bool(re.search(r"[0-9]", password)),
        bool(_SPECIAL_RE.search(password)),
    ])
    strength = "weak"
    if score >= 5:
        strength = "good"
    if score >= 6:
        strength = "strong"
    if score == 2:
        strength = "fair"
    return strength, score


def generate_password(body: PasswordInput) -> dict:
    alphabet = ""
    if body.use_uppercase:
        alphabet += string.ascii_uppercase
    if body.use_lowercase:
        alphabet += string.ascii_lowercase
    if body.use_numbers:
        alphabet += string.digits
    if body.use_special_chars:
        alphabet += SPECIAL_CHARS

    password = "".join(secrets.choice(alphabet) for _ in range(body.length))
    strength, _ = password_strength(password)
    return {
        "password": password,
        "strength": strength,
        "metrics": {
            "length": len(password),
            "hasUppercase": bool(re.search(r"[A-Z]", password)),
            "hasLowercase": bool(re.search(r"[a-z]", password)),
            "hasNumbers": bool(re.search(r"[0-9]", password)),
            "hasSpecialChars": bool(_SPECIAL_RE.search(password)),
        },
    }
