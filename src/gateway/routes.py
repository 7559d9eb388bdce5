"""Webhook endpoints.

Each delivery is verified, decoded and dispatched before the response is
written; the response carries a short plaintext acknowledgement only.
"""

from collections.abc import Callable

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from connectors.github import decode_github_webhook, extract_github_webhook_metadata
from connectors.gitlab import decode_gitlab_webhook, extract_gitlab_webhook_metadata
from src.bot.errors import DecodeError
from src.bot.events import Event
from src.gateway.dispatcher import Dispatcher
from src.gateway.verification import WebhookVerifier
from src.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

router = APIRouter()

Decoder = Callable[[dict[str, str], bytes], Event]
MetadataExtractor = Callable[[dict[str, str], str], dict[str, str | int | bool]]


async def _handle_webhook(
    request: Request,
    source: str,
    verifier: WebhookVerifier,
    decode: Decoder,
    extract_metadata: MetadataExtractor,
    delivery_header: str,
) -> PlainTextResponse:
    body = await request.body()
    headers = dict(request.headers)
    dispatcher: Dispatcher = request.app.state.dispatcher

    with LogContext(source=source, delivery_id=headers.get(delivery_header, "unknown")):
        logger.info(
            f"Received {source} webhook",
            **extract_metadata(headers, body.decode("utf-8", errors="replace")),
        )

        verification = verifier.verify(headers, body)
        if not verification.success:
            logger.warning("Webhook verification failed", error=verification.error)
            return PlainTextResponse(f"Error: {verification.error}", status_code=401)

        try:
            event = decode(headers, body)
        except DecodeError as e:
            logger.warning("Could not decode webhook", error=str(e))
            return PlainTextResponse(f"Error: {e}", status_code=400)

        result = dispatcher.dispatch(event, signed=verification.signed)
        logger.info(
            "Webhook dispatched",
            event_type=type(event).__name__,
            status_code=result.status_code,
        )
        return PlainTextResponse(result.message, status_code=result.status_code)


# /push and /pull_request are kept for hooks configured against older deployments
@router.post("/github")
@router.post("/push")
@router.post("/pull_request")
async def github_webhook(request: Request) -> PlainTextResponse:
    """Process a GitHub webhook."""
    return await _handle_webhook(
        request,
        "github",
        request.app.state.github_verifier,
        decode_github_webhook,
        extract_github_webhook_metadata,
        "x-github-delivery",
    )


# /job and /pipeline are kept for hooks configured against older deployments
@router.post("/gitlab")
@router.post("/job")
@router.post("/pipeline")
async def gitlab_webhook(request: Request) -> PlainTextResponse:
    """Process a GitLab webhook."""
    return await _handle_webhook(
        request,
        "gitlab",
        request.app.state.gitlab_verifier,
        decode_gitlab_webhook,
        extract_gitlab_webhook_metadata,
        "x-gitlab-event-uuid",
    )
