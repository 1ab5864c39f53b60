import logging
import time
from functools import partial
from typing import Any

from fastapi import Request
from fastapi.responses import PlainTextResponse, Response
from pydantic import ValidationError

from models.chat_models import RelayRequest
from services.chat.cancellation import RelayCancellation
from services.chat.errors import CancelReason, ChatValidationError, StreamCancelled, UpstreamError
from services.chat.normalizer import EMPTY_MESSAGES_DETAIL, normalize_messages
from services.chat.stream_writer import OutputStreamWriter, RelayStreamingResponse
from services.chat.upstream_client import UpstreamStreamClient
from utils.settings import RelaySettings

STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"
STREAM_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Cache-Control": "no-cache, no-transform",
}
CLIENT_CLOSED_REQUEST = 499


def parse_relay_request(payload: Any) -> RelayRequest:
    """Validate a decoded JSON body into a `RelayRequest`.

    Raises:
        ChatValidationError: If `messages` is missing, not a list, empty, holds
            a malformed message, or has no message with content or an attachment.
    """
    messages = payload.get("messages") if isinstance(payload, dict) else None
    if not isinstance(messages, list) or not messages:
        raise ChatValidationError(EMPTY_MESSAGES_DETAIL)

    try:
        relay_request = RelayRequest.model_validate({"messages": messages})
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ChatValidationError(f"Invalid request body: {location}: {first.get('msg')}") from exc

    if all(message.is_empty for message in relay_request.messages):
        raise ChatValidationError(
            "Invalid request body: at least one message must have content or an attachment."
        )
    return relay_request


async def relay_chat(request: Request) -> Response:
    """Relay one chat request upstream and stream the completion back.

    The first delta is awaited before the response status is committed, so
    failures that happen before any text exists still get a proper status:
    400 for invalid input, the upstream status for upstream errors, 504 when
    the deadline fires first. After that the response is a 200 text stream
    that simply ends early on a mid-stream deadline.

    Args:
        request: FastAPI Request (used to access shared settings and the upstream client).

    Returns:
        A `StreamingResponse` on success, otherwise a plain-text error response.
    """
    started_at = time.monotonic()
    logging.info("POST /api/chat - Request received.")

    settings: RelaySettings = request.app.state.settings
    openai_client = getattr(request.app.state, "openai_client", None)
    if openai_client is None:
        logging.error("Upstream API key not configured.")
        return PlainTextResponse("API key not configured", status_code=500)

    try:
        payload = await request.json()
    except ValueError:
        logging.warning("Invalid request body: not valid JSON.")
        return PlainTextResponse(EMPTY_MESSAGES_DETAIL, status_code=400)

    try:
        relay_request = parse_relay_request(payload)
        upstream_messages = normalize_messages(relay_request.messages, settings.system_prompt)
    except ChatValidationError as exc:
        logging.warning("%s", exc)
        return PlainTextResponse(str(exc), status_code=400)

    cancellation = RelayCancellation()
    cancellation.start_deadline(settings.timeout_seconds)
    cancellation.watch_disconnect(request.receive)
    handed_off = False
    deltas = None

    try:
        delta_stream = await UpstreamStreamClient(openai_client, settings.model).open(
            upstream_messages, cancellation
        )
        deltas = aiter(delta_stream)
        first = await anext(deltas, None)

        writer = OutputStreamWriter(cancellation, started_at=started_at)
        response = RelayStreamingResponse(
            writer.stream(deltas, first),
            on_close=partial(writer.abandon, deltas),
            media_type=STREAM_MEDIA_TYPE,
            headers=STREAM_HEADERS,
        )
        handed_off = True
        return response
    except StreamCancelled as exc:
        if exc.reason is CancelReason.DEADLINE:
            logging.error(
                "Upstream call timed out after %ss before any output. Aborting request.",
                settings.timeout_seconds,
            )
            return PlainTextResponse("The request to the AI service timed out.", status_code=504)
        logging.warning("Client disconnected before streaming started; upstream request aborted.")
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    except UpstreamError as exc:
        return PlainTextResponse(f"AI Service Error: {exc.message}", status_code=exc.status)
    except Exception:
        logging.exception(
            "Error in chat relay handler after %.0fms", (time.monotonic() - started_at) * 1000
        )
        return PlainTextResponse("Error processing request.", status_code=500)
    finally:
        # The writer owns the cancellation context once the response exists.
        if not handed_off:
            cancellation.release()
            if deltas is not None:
                await deltas.aclose()
