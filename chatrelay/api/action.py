"""Local action API used by the agent to act on the chat platform."""

import json
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..models.action import ActionRequest, ActionResponse
from ..services.actions import ActionHandler
from ..utils.logger import get_app_logger

router = APIRouter(tags=["action"])

# Global action handler instance (will be set by main.py)
action_handler: ActionHandler = None


def get_action_handler() -> ActionHandler:
    """Get the action handler instance."""
    if action_handler is None:
        raise HTTPException(status_code=500, detail="Action handler not initialized")
    return action_handler


def _response(status_code: int, ok: bool, result=None, error: Optional[str] = None) -> JSONResponse:
    body = ActionResponse(ok=True, result=result) if ok else ActionResponse(ok=False, error=error)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_unset=True))


@router.post("/action")
@router.post("/slack/action")
async def run_action(request: Request):
    """
    Execute one chat action.

    Returns:
        ``{ok: true, result}`` on success, ``{ok: false, error}`` otherwise
    """
    handler = get_action_handler()
    if not handler.is_authorized(request.headers.get("authorization")):
        return _response(401, ok=False, error="Unauthorized")

    try:
        payload = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _response(400, ok=False, error="Invalid JSON payload")

    if not isinstance(payload, dict):
        return _response(400, ok=False, error="Invalid payload")

    try:
        action_request = ActionRequest.model_validate(payload)
    except ValidationError:
        return _response(400, ok=False, error="Invalid payload")

    try:
        result = await handler.handle(action_request)
    except Exception as e:
        get_app_logger().warning(f"[ActionAPI] {action_request.action} failed: {e}")
        return _response(400, ok=False, error=str(e))

    return _response(200, ok=True, result=result)
