# database/session.py

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


def _engine_options() -> dict:
    # SQLite pools don't take sizing arguments
    if settings.DATABASE_URL.startswith("sqlite"):
        return {}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,  # Check connection health before using
    }


# Setup SQLAlchemy async engine and session maker
async_engine = create_async_engine(settings.DATABASE_URL, echo=False, **_engine_options())
AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False)
Base = declarative_base()

# ============= Models =============

class KnowledgeBaseEntity(Base):
    __tablename__ = "knowledge_bases"
    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    kb_type = Column(String(16), nullable=False)  # 'query' or 'tech'
    chunk_size = Column(Integer, nullable=False)
    chunk_overlap = Column(Integer, nullable=False)
    timestamp = Column(DateTime, default=_utcnow)


class DocumentEntity(Base):
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("kb_id", "file_name", name="uq_documents_kb_file"),)

    id = Column(String, primary_key=True, default=_new_id)
    kb_id = Column(String, ForeignKey("knowledge_bases.id", ondelete="CASCADE"), nullable=False, index=True)
    file_name = Column(String, nullable=False)  # sanitized client name
    stored_filename = Column(String, nullable=False)  # path relative to UPLOADS_DIR
    content_type = Column(String, nullable=False)
    file_hash = Column(String, nullable=False, index=True)
    size = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False)
    connector = Column(String, nullable=False, default="local")
    last_modified = Column(String, nullable=True)
    chunk_count = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=_utcnow)


class JobEntity(Base):
    __tablename__ = "ingestion_jobs"
    id = Column(String, primary_key=True, default=_new_id)
    kb_id = Column(String, ForeignKey("knowledge_bases.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(16), nullable=False)
    files = Column(JSON, nullable=False, default=list)
    timestamp = Column(DateTime, default=_utcnow)
    triggered_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)


class GuardrailEntity(Base):
    __tablename__ = "guardrails"
    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    source_name = Column(String, nullable=False)
    source_config = Column(JSON, nullable=False, default=dict)
    response_blocking = Column(Boolean, nullable=False, default=False)
    timestamp = Column(DateTime, default=_utcnow)


class TemplateEntity(Base):
    __tablename__ = "templates"
    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=_utcnow)


class ExecutionLayerEntity(Base):
    __tablename__ = "execution_layers"
    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    layer_type = Column(String(32), nullable=False)
    config = Column(JSON, nullable=False, default=dict)
    timestamp = Column(DateTime, default=_utcnow)


class AgentEntity(Base):
    __tablename__ = "agents"
    id = Column(String, primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    template_id = Column(String, ForeignKey("templates.id"), nullable=False)
    execution_layer_ids = Column(JSON, nullable=False, default=list)  # ordered
    guardrail_ids = Column(JSON, nullable=False, default=list)
    timestamp = Column(DateTime, default=_utcnow)


class ConversationEntity(Base):
    __tablename__ = "conversations"
    id = Column(String, primary_key=True, default=_new_id)
    agent_id = Column(String, nullable=True)
    kb_id = Column(String, nullable=True)
    timestamp = Column(DateTime, default=_utcnow)


class MessageEntity(Base):
    __tablename__ = "messages"
    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    query_id = Column(String, nullable=False)
    sender = Column(String, nullable=False)  # 'user' or 'ai'
    content = Column(Text, nullable=False)
    timestamp = Column(DateTime, default=_utcnow)


# ============= Dependencies =============

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Provide database session for FastAPI dependency injection"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

# ============= Session Factory =============

@asynccontextmanager
async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a new database session with proper cleanup.

    Used by background jobs where request-scoped sessions are unavailable.
    Ensures proper rollback on errors and explicit closure.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """Create all tables."""
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized")
