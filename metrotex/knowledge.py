"""Local question/answer knowledge consulted before the chat provider."""

from typing import Optional

from sqlalchemy.orm import Session

from .debug import get_debug_logger
from .models import KnowledgeEntry


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def find_answer(db: Session, message: str) -> Optional[KnowledgeEntry]:
    """Return the oldest entry whose question contains ``message``."""
    needle = message.strip()
    if not needle:
        return None
    pattern = f"%{_escape_like(needle)}%"
    entry = (
        db.query(KnowledgeEntry)
        .filter(KnowledgeEntry.question.like(pattern, escape="\\"))
        .order_by(KnowledgeEntry.id)
        .first()
    )
    get_debug_logger().debug_db(f"knowledge lookup {needle!r}: {'hit' if entry else 'miss'}")
    return entry


def add_entry(db: Session, question: str, answer: str) -> KnowledgeEntry:
    entry = KnowledgeEntry(question=question.strip(), answer=answer.strip())
    db.add(entry)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    return entry
