from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, func
from sqlalchemy.orm import relationship, declarative_base

# Define Base here to avoid circular imports
Base = declarative_base()


class KnowledgeEntry(Base):
    __tablename__ = "knowledge"

    id = Column(Integer, primary_key=True, index=True)
    question = Column(Text, nullable=False)
    answer = Column(Text, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class ImageJob(Base):
    __tablename__ = "image_jobs"

    id = Column(String, primary_key=True, index=True)
    prompt = Column(Text, nullable=False)
    horde_job_id = Column(String, nullable=True, index=True)
    models = Column(String, nullable=True)  # comma separated accepted group
    status = Column(String, nullable=False, default="pending")  # pending, completed, failed
    image_url = Column(String, nullable=True)
    model_used = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    poll_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class ChatSession(Base):
    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True, unique=True, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(String, ForeignKey("chat_sessions.id"), nullable=False)
    role = Column(String, nullable=False)  # 'user' or 'assistant'
    content = Column(Text, nullable=False)
    source = Column(String, nullable=True)  # 'local' or 'AI' for assistant turns
    created_at = Column(DateTime, server_default=func.now())

    chat = relationship("ChatSession", back_populates="messages")


# Add messages relationship to ChatSession
ChatSession.messages = relationship("ChatMessage", back_populates="chat", cascade="all, delete-orphan")
