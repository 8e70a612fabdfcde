"""
Tool Endpoints
==============

GET  /api/tools             Catalogue with per-call cost and rate tiers.
GET  /api/tools/{tool_id}   Description and parameters of one tool.
POST /api/tools/{tool_id}   Run a tool. ``Authorization: Bearer <api key>``.

POST bodies are read raw so an empty or non-JSON body reaches the pipeline
as None and is reported as VALIDATION_ERROR only after the caller has been
authenticated and rate-limited.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Request

from toolshub.core.errors import ToolsHubError
from toolshub.models.responses import success_body
from toolshub.pricing import FREE_TIER, PAID_TIER
from toolshub.services.tool_pipeline import run_tool_call
from toolshub.tools import ToolDefinition, get_tool, list_tools

logger = logging.getLogger(__name__)

router = APIRouter()


def _tier_dict(tier) -> dict:
    return {"requestsPerSecond": tier.requests_per_second, "dailyLimit": tier.daily_limit}


def _require_tool(tool_id: str) -> ToolDefinition:
    tool = get_tool(tool_id)
    if tool is None:
        raise ToolsHubError("NOT_FOUND", f"Unknown tool '{tool_id}'")
    return tool


async def _read_json(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except (ValueError, RecursionError):
        return None


@router.get("", summary="List tools")
async def list_tool_catalogue():
    return success_body({
        "tools": [tool.describe() for tool in list_tools()],
        "tiers": {"free": _tier_dict(FREE_TIER), "paid": _tier_dict(PAID_TIER)},
    })


@router.get("/{tool_id}", summary="Describe a tool")
async def describe_tool(tool_id: str):
    return success_body(_require_tool(tool_id).describe())


@router.post("/{tool_id}", summary="Run a tool")
async def call_tool(tool_id: str, request: Request):
    tool = _require_tool(tool_id)
    payload = await _read_json(request)
    return await run_tool_call(tool, request.headers.get("Authorization"), payload)
