"""
Response envelope shared by every endpoint.

    {
      "success": bool,
      "data": ...,                                  # success only
      "error": {"code", "message", "details"?},    # failure only
      "meta": {"timestamp", "rateLimit"?: {...}}
    }

The pydantic models document the shape in OpenAPI; the helpers below build
the JSON bodies.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field


class RateLimitMeta(BaseModel):
    """Quota and billing figures attached to tool call responses."""

    model_config = ConfigDict(populate_by_name=True)

    remaining: Optional[int] = Field(None, description="Daily calls left (free/sandbox) or balance in cents (paid)")
    balance: Optional[int] = Field(None, description="Balance in cents after this call")
    cost_this_call: float = Field(0, alias="costThisCall", description="Cost charged for this call, fractional cents")
    requests_per_second: int = Field(..., alias="requestsPerSecond")


class ResponseMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    rate_limit: Optional[RateLimitMeta] = Field(None, alias="rateLimit")


class ErrorBody(BaseModel):
    code: str = Field(..., examples=["INSUFFICIENT_BALANCE"])
    message: str
    details: Optional[Any] = None


class ApiEnvelope(BaseModel):
    """Standard response envelope."""

    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    meta: ResponseMeta


def _meta(rate_limit: Optional[RateLimitMeta]) -> dict:
    meta: dict = {"timestamp": datetime.now(timezone.utc).isoformat()}
    if rate_limit is not None:
        meta["rateLimit"] = rate_limit.model_dump(by_alias=True)
    return meta


def success_body(data: Any, rate_limit: Optional[RateLimitMeta] = None) -> dict:
    return {"success": True, "data": data, "meta": _meta(rate_limit)}


def error_body(code: str, message: str, details: Any = None) -> dict:
    error: dict = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error, "meta": _meta(None)}


def success_response(
    data: Any,
    rate_limit: Optional[RateLimitMeta] = None,
    status_code: int = 200,
) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=success_body(data, rate_limit))


def error_response(code: str, message: str, status_code: int, details: Any = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error_body(code, message, details))
