from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from cyberhr.audit import log_audit
from cyberhr.db import get_db
from cyberhr.dependencies import client_ip, get_current_caller, request_id, require_whatsapp_token, user_agent
from cyberhr.schemas import WhatsAppConversationRead, WhatsAppIngestResponse, WhatsAppMessageIn
from cyberhr.security import Caller
from cyberhr.services import whatsapp

router = APIRouter(prefix="/api/whatsapp", tags=["whatsapp"])


@router.post(
    "/messages",
    response_model=WhatsAppIngestResponse,
    dependencies=[Depends(require_whatsapp_token)],
)
def ingest_message(
    payload: WhatsAppMessageIn,
    request: Request,
    db: Session = Depends(get_db),
) -> WhatsAppIngestResponse:
    result = whatsapp.ingest_message(
        db,
        phone_number=payload.phone_number,
        message_text=payload.message_text,
        extracted_data=payload.extracted_data,
    )
    if result.leave_request is not None:
        log_audit(
            db,
            actor=None,
            action="LEAVE_REQUEST_SUBMITTED",
            success=True,
            entity_type="leave_request",
            entity_id=result.leave_request.id,
            ip=client_ip(request),
            user_agent=user_agent(request),
            details={"source": "whatsapp", "conversation_id": result.conversation.id},
            request_id=request_id(request),
        )
    return WhatsAppIngestResponse(
        conversation_id=result.conversation.id,
        leave_request_id=result.leave_request.id if result.leave_request is not None else None,
        reply=result.reply,
    )


@router.get("/conversations", response_model=list[WhatsAppConversationRead])
def list_conversations(
    phone_number: str | None = Query(default=None, max_length=50),
    limit: int = Query(default=200, ge=1, le=1000),
    caller: Caller = Depends(get_current_caller),
    db: Session = Depends(get_db),
) -> list[WhatsAppConversationRead]:
    rows = whatsapp.list_conversations(db, caller, phone_number=phone_number, limit=limit)
    return [WhatsAppConversationRead.model_validate(item) for item in rows]
