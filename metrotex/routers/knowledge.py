from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..knowledge import add_entry
from ..models import KnowledgeEntry
from ..schemas import KnowledgeEntryOut, TrainRequest, TrainResponse

router = APIRouter(tags=["knowledge"])


@router.post("/train", response_model=TrainResponse)
def train(payload: TrainRequest, db: Session = Depends(get_db)):
    """Store a question/answer pair for local chat answers."""
    question = (payload.question or "").strip()
    answer = (payload.answer or "").strip()
    if not question or not answer:
        raise HTTPException(status_code=400, detail="Missing Q/A")
    entry = add_entry(db, question, answer)
    return TrainResponse(success=True, id=entry.id)


@router.get("/knowledge", response_model=List[KnowledgeEntryOut])
def list_knowledge(limit: int = 100, offset: int = 0, db: Session = Depends(get_db)):
    return (
        db.query(KnowledgeEntry)
        .order_by(KnowledgeEntry.id)
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.delete("/knowledge/{entry_id}", status_code=204)
def delete_knowledge(entry_id: int, db: Session = Depends(get_db)):
    entry = db.get(KnowledgeEntry, entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="Knowledge entry not found")
    db.delete(entry)
    db.commit()
