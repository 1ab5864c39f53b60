"""FastAPI routes for the streaming chat relay."""

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from controllers.chat_controller import relay_chat

router = APIRouter(prefix="/api/chat", tags=["chat"])

PREFLIGHT_HEADERS = {
    "Allow": "POST, OPTIONS",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "86400",
}


@router.post("", summary="Stream a chat completion")
async def post_chat(request: Request) -> Response:
    """Relay the posted conversation upstream and stream the reply as plain text.

    Raises:
        HTTPException: If the relay fails outside its own error handling.
    """
    try:
        return await relay_chat(request)
    except HTTPException:
        raise
    except Exception as exc:  # pylint: disable=broad-exception-caught
        logging.exception("Unhandled error in chat route")
        raise HTTPException(status_code=500, detail="Error processing request.") from exc


@router.options("", include_in_schema=False)
async def chat_preflight() -> Response:
    """Answer CORS preflight requests for the chat endpoint."""
    return Response(status_code=200, headers=PREFLIGHT_HEADERS)
