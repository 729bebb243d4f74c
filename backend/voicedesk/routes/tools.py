"""
Tool invocation route.

The browser relays every function call the voice model makes to
POST /api/tools/{tool_name}. The body carries the provider session id and
the call's arguments; the response goes back to the model as the function
output. `update_session: true` tells the browser to push the returned tools
into the live session.

The todo and learning screens post here too, without a session id.
"""
from typing import Optional

from fastapi import APIRouter, Depends

from voicedesk.dependencies import get_dispatcher, get_optional_identity
from voicedesk.models.tool import ToolRequest
from voicedesk.models.user import Identity
from voicedesk.services.tool_dispatcher import ToolDispatcher

router = APIRouter()


@router.post("/tools/{tool_name}")
async def invoke_tool(
    tool_name: str,
    body: ToolRequest,
    identity: Optional[Identity] = Depends(get_optional_identity),
    dispatcher: ToolDispatcher = Depends(get_dispatcher),
):
    return await dispatcher.dispatch(tool_name, body, identity)
