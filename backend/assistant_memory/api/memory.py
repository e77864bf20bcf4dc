from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from assistant_memory.schemas.memory import (
    ForgetSessionResponse,
    MemoryChunkOut,
    PersistRequest,
    PersistResponse,
    RetrievedContextOut,
    RetrieveRequest,
    RetrieveResponse,
)
from assistant_memory.services.memory_service import MemoryService

router = APIRouter(prefix="/api/memory", tags=["memory"])


def get_memory_service(request: Request) -> MemoryService:
    """Dependency to access the memory service from app state."""

    return request.app.state.memory_service


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Caller identity as forwarded by the upstream gateway."""

    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="X-User-Id header is required"
        )
    return user_id


@router.post("/retrieve", response_model=RetrieveResponse)
async def retrieve_memory(
    payload: RetrieveRequest,
    user_id: str = Depends(get_user_id),
    memory_service: MemoryService = Depends(get_memory_service),
) -> RetrieveResponse:
    """Rank the caller's stored chunks against a query."""

    results = await memory_service.retrieve_context(
        user_id=user_id,
        query=payload.query,
        limit=payload.count,
    )
    return RetrieveResponse(chunks=[RetrievedContextOut.from_context(item) for item in results])


@router.post("/persist", response_model=PersistResponse)
async def persist_memory(
    payload: PersistRequest,
    user_id: str = Depends(get_user_id),
    memory_service: MemoryService = Depends(get_memory_service),
) -> PersistResponse:
    """Chunk, embed and store one chat message for the caller."""

    chunks = await memory_service.persist_memory(
        user_id=user_id,
        session_id=payload.session_id,
        message_id=payload.message_id,
        content=payload.content,
        provenance=payload.provenance.to_provenance() if payload.provenance else None,
    )
    return PersistResponse(chunks=[MemoryChunkOut.from_chunk(chunk) for chunk in chunks])


@router.delete("/session/{session_id}", response_model=ForgetSessionResponse)
async def forget_session(
    session_id: str,
    user_id: str = Depends(get_user_id),
    memory_service: MemoryService = Depends(get_memory_service),
) -> ForgetSessionResponse:
    """Remove the caller's chunks that originated in a deleted session."""

    deleted = await memory_service.forget_session(session_id=session_id, user_id=user_id)
    return ForgetSessionResponse(deleted=deleted)
