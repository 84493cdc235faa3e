import logging
from datetime import datetime, timezone
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..chat_providers import ChatRelay
from ..config import Settings, get_settings
from ..database import get_db
from ..debug import get_debug_logger
from ..errors import RelayError
from ..knowledge import find_answer
from ..models import ChatMessage, ChatSession
from ..schemas import ChatHistoryMessage, ChatHistoryResponse, ChatRequest, ChatResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def get_chat_relay(settings: Settings = Depends(get_settings)) -> ChatRelay:
    return ChatRelay(settings.chat)


def _save_turns(db: Session, session_id: str, turns: List[Dict[str, str]]) -> None:
    """Save chat messages, creating the session on first use."""
    try:
        if db.get(ChatSession, session_id) is None:
            db.add(ChatSession(id=session_id, name="Chat"))
        for turn in turns:
            db.add(ChatMessage(chat_id=session_id, **turn))
        db.commit()
    except Exception:
        logger.exception("Error saving chat messages for %s", session_id)
        db.rollback()


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat_endpoint(
    payload: ChatRequest,
    db: Session = Depends(get_db),
    relay: ChatRelay = Depends(get_chat_relay),
) -> ChatResponse:
    """Answer from local knowledge first, otherwise from the chat provider."""
    message = (payload.message or "").strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message required")

    entry = find_answer(db, message)
    if entry is not None:
        reply, source, model = entry.answer, "local", None
    else:
        try:
            result = await relay.reply(message, [m.model_dump() for m in payload.context])
        except RelayError as exc:
            raise HTTPException(status_code=exc.status_code, detail=exc.message)
        reply, source, model = result.reply, "AI", result.model

    if payload.session_id:
        _save_turns(db, payload.session_id, [
            {"role": "user", "content": message},
            {"role": "assistant", "content": reply, "source": source},
        ])
    get_debug_logger().debug_llm_responses(f"Returning reply ({source}): {reply!r}")
    return ChatResponse(reply=reply, source=source, model=model, timestamp=datetime.now(timezone.utc))


@router.get("/chats/{session_id}", response_model=ChatHistoryResponse)
async def get_chat(session_id: str, db: Session = Depends(get_db)) -> ChatHistoryResponse:
    messages = (
        db.query(ChatMessage)
        .filter(ChatMessage.chat_id == session_id)
        .order_by(ChatMessage.id)
        .all()
    )
    return ChatHistoryResponse(
        session_id=session_id,
        messages=[ChatHistoryMessage(role=m.role, content=m.content, source=m.source) for m in messages],
    )


@router.post("/chats/{session_id}/reset")
async def reset_chat(session_id: str, db: Session = Depends(get_db)) -> Dict[str, str]:
    try:
        db.query(ChatMessage).filter(ChatMessage.chat_id == session_id).delete()
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"status": "ok"}
