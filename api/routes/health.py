"""Health check endpoints."""

from fastapi import APIRouter
from pydantic import BaseModel

from workflow.transitions import TRANSITION_TABLE_VERSION

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    transition_table_version: int


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        version="0.1.0",
        transition_table_version=TRANSITION_TABLE_VERSION,
    )
