import hmac
import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from chapterbot.config import settings
from chapterbot.database import get_db
from chapterbot.logging_config import new_request_id, request_logger
from chapterbot.schemas.line import LineWebhookBody, LineWebhookResponse
from chapterbot.services.credential_service import authenticate
from chapterbot.services.errors import AuthenticationError
from chapterbot.services.event_dispatcher import process_events

router = APIRouter()

SIGNATURE_HEADER = "x-line-signature"


def _is_internal_test(authorization: Optional[str]) -> bool:
    token = settings.internal_test_token
    if not token or not authorization or not authorization.startswith("Bearer "):
        return False
    return hmac.compare_digest(authorization[len("Bearer "):].strip().encode(), token.encode())


@router.post("/line/webhook", response_model=LineWebhookResponse, response_model_exclude_none=True)
async def handle_line_webhook(request: Request, db: Session = Depends(get_db)):
    """
    Receive a LINE delivery:
    - authenticate against the tenant that owns ``destination`` (HMAC over the raw body)
    - process each event in order, best effort
    - always 200 once authenticated, whatever happened to individual events
    """
    request_id = new_request_id()
    log = request_logger("line_webhook", request_id)

    # The signature covers these exact bytes; never validate a re-serialized body.
    raw_body = await request.body()

    try:
        payload = json.loads(raw_body)
    except ValueError:
        log.warning("Webhook body is not valid JSON")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    events = payload.get("events")
    if not isinstance(events, list):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing or invalid events")

    if _is_internal_test(request.headers.get("authorization")):
        log.info("Internal test webhook", extra={"context": {"events": len(events)}})
        return LineWebhookResponse(
            success=True,
            message="Test webhook received successfully",
            processed=len(events),
            mode="test",
        )

    destination = payload.get("destination")
    if not destination or not isinstance(destination, str):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing destination")

    try:
        credential = authenticate(db, raw_body, destination, request.headers.get(SIGNATURE_HEADER))
    except AuthenticationError as e:
        log.warning(f"Webhook rejected: {e}", extra={"context": {"destination": destination}})
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    try:
        body = LineWebhookBody.model_validate(payload)
    except ValidationError as e:
        log.warning("Malformed webhook payload", extra={"context": {"errors": e.errors()[:5]}})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed payload")

    log = request_logger("line_webhook", request_id, tenant_id=credential.tenant_id)
    log.info("Webhook received", extra={"context": {"events": len(body.events)}})

    completed = await run_in_threadpool(process_events, db, credential, body.events, log)

    log.info("Webhook processed", extra={"context": {"events": len(body.events), "completed": completed}})
    return LineWebhookResponse(success=True)
