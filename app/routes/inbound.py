"""
inbound.py
----------
Purpose:
    Webhook for emailed replies to thread emails.

Notes:
    - The mail provider posts multipart form data (envelope, text, html).
    - Rejected replies are acknowledged with 200 and a FAIL status so the
      provider does not retry them; server errors still return 500.
"""

from fastapi import APIRouter, Depends, Form

from app.dependencies import Clients, get_clients
from app.errors import ConvoError
from app.infrastructure.observability.logging import get_logger, log_alarm
from app.models.api.thread_response import InboundResponse
from app.services import inbound_service

router = APIRouter(tags=["inbound"])
logger = get_logger(__name__)


@router.post("/inbound", response_model=InboundResponse)
async def receive_inbound(
    envelope: str = Form(""),
    html: str = Form(""),
    text: str = Form(""),
    clients: Clients = Depends(get_clients),
):
    try:
        message = await inbound_service.handle_inbound(clients.store, clients.mail, envelope, html, text)
    except ConvoError as e:
        if not e.client_reportable:
            raise
        log_alarm(e.with_op("inbound.receive_inbound"))
        return InboundResponse(status="FAIL")
    return InboundResponse(status="PASS", message_id=message.id)
