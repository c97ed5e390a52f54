# medintake/api/routes_intake.py
import logging

from fastapi import APIRouter, Depends, HTTPException

from medintake.schemas.models import (
    ChatResult,
    IntakeMessageRequest,
    IntakeResetRequest,
    IntakeResponse,
    IntakeStartRequest,
)
from medintake.services.conversation_store import (
    Conversation,
    ConversationStore,
    get_conversation_store,
)
from medintake.services.intake_engine import ConversationBusyError
from medintake.services.medication_store import (
    MedicationStore,
    build_medication_record,
    get_medication_store,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/intake", tags=["intake"])

def _require(store: ConversationStore, conversation_id: str) -> Conversation:
    conv = store.get(conversation_id)
    if conv is None:
        raise HTTPException(status_code=404, detail="conversation_id not found")
    return conv

@router.post("/start", response_model=IntakeResponse)
def intake_start(
    req: IntakeStartRequest,
    conversations: ConversationStore = Depends(get_conversation_store),
):
    conv = conversations.create(req.owner_id)
    return IntakeResponse(
        conversation_id=conv.conversation_id,
        transcript=conv.engine.transcript,
    )

@router.post("/message", response_model=IntakeResponse)
def intake_message(
    req: IntakeMessageRequest,
    conversations: ConversationStore = Depends(get_conversation_store),
    meds: MedicationStore = Depends(get_medication_store),
):
    if not req.message.strip():
        raise HTTPException(status_code=400, detail="message must not be blank.")

    conv = _require(conversations, req.conversation_id)
    if conv.pending_draft is not None:
        # the engine already confirmed this draft, only storage is retried
        result = ChatResult(status="complete", draft=conv.pending_draft)
    else:
        try:
            result = conv.engine.submit_user_message(req.message, cancel=conv.cancel)
        except ConversationBusyError as e:
            raise HTTPException(status_code=409, detail=str(e))

    resp = IntakeResponse(
        conversation_id=conv.conversation_id,
        result=result,
        transcript=conv.engine.transcript,
    )

    if result is not None and result.status == "complete" and result.draft is not None:
        try:
            resp.record = meds.insert_medication(build_medication_record(result.draft, conv.owner_id))
        except Exception as e:
            conv.pending_draft = result.draft
            logger.error("Failed to store medication for %s: %s", conv.conversation_id, e)
            raise HTTPException(
                status_code=500,
                detail="Failed to add medication. Send any message to retry saving it.",
            )
        conversations.discard(conv.conversation_id)

    return resp

@router.post("/reset", response_model=IntakeResponse)
def intake_reset(
    req: IntakeResetRequest,
    conversations: ConversationStore = Depends(get_conversation_store),
):
    conv = _require(conversations, req.conversation_id)
    try:
        conv.engine.reset()
        conv.engine.start()
    except ConversationBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    conv.pending_draft = None
    return IntakeResponse(conversation_id=conv.conversation_id, transcript=conv.engine.transcript)

@router.get("/transcript", response_model=IntakeResponse)
def intake_transcript(
    conversation_id: str,
    conversations: ConversationStore = Depends(get_conversation_store),
):
    conv = _require(conversations, conversation_id)
    return IntakeResponse(conversation_id=conv.conversation_id, transcript=conv.engine.transcript)

@router.delete("/{conversation_id}")
def intake_cancel(
    conversation_id: str,
    conversations: ConversationStore = Depends(get_conversation_store),
):
    if not conversations.discard(conversation_id):
        raise HTTPException(status_code=404, detail="conversation_id not found")
    return {"ok": True, "conversation_id": conversation_id}
