"""Request-scoped dependencies for FastAPI routes."""
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from core.config import get_settings
from core.db import SessionLocal
from domain.intake import IntakePipeline
from outbox.dispatcher import OutboxDispatcher, get_outbox_dispatcher
from services.ranker import LLMWindowRanker


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a database session.

    Commits when the route returns, rolls back if it raises, so domain
    services only ever flush.

    Yields:
        SQLAlchemy Session instance.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_readonly_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a read-only database session.

    Yields:
        SQLAlchemy Session instance (read-only mode).
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()


def resolve_client_ip(request: Request, trusted_proxy_count: Optional[int] = None) -> str:
    """
    The client address as seen by the outermost trusted proxy.

    Each trusted proxy appends the peer it received from to
    X-Forwarded-For, so the client is the hop ``trusted_proxy_count`` from
    the right. Hops further left are client-supplied and ignored. Falls
    back to the socket peer when the header is shorter than the proxy
    chain or proxies are not trusted, else ``unknown``.
    """
    if trusted_proxy_count is None:
        trusted_proxy_count = get_settings().trusted_proxy_count
    if trusted_proxy_count > 0:
        forwarded = request.headers.get("x-forwarded-for", "")
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        if len(hops) >= trusted_proxy_count:
            return hops[-trusted_proxy_count]
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


_intake_pipeline: IntakePipeline | None = None


def get_intake_pipeline() -> IntakePipeline:
    """Intake owns its transaction, so it gets no request session."""
    global _intake_pipeline
    if _intake_pipeline is None:
        _intake_pipeline = IntakePipeline()
    return _intake_pipeline


def get_dispatcher() -> OutboxDispatcher:
    return get_outbox_dispatcher()


def get_window_ranker() -> LLMWindowRanker:
    return LLMWindowRanker()


__all__ = [
    "get_db",
    "get_readonly_db",
    "resolve_client_ip",
    "get_intake_pipeline",
    "get_dispatcher",
    "get_window_ranker",
]
