"""
API request/response Pydantic models.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ProjectIdRequest(BaseModel):
    project_name: str = Field(..., description="Human-readable project name")


class ProjectIdResponse(BaseModel):
    project_id: str


class StartIndexingRequest(BaseModel):
    """Start tracking a project's indexing job."""

    project_name: str = Field(..., min_length=1, description="Project name sent to the backend")
    project_id: Optional[str] = Field(
        None,
        description="Tracker key; defaults to the normalized project name",
    )


class IndexingStatsModel(BaseModel):
    thread_count: int = 0
    message_count: int = 0
    pdf_count: int = 0


class IndexingStateResponse(BaseModel):
    project_id: str
    project_name: str
    status: str = Field(..., description="indexing | completed | error")
    percent: int = Field(..., ge=0, le=100)
    current_step: str
    stats: Optional[IndexingStatsModel] = None
    started_at: float
    completed_at: Optional[float] = None
    error: Optional[str] = None
    updated_at: float
    is_tracking: bool = Field(False, description="A coordinator in this process is running the job")

    @classmethod
    def from_state(cls, state, is_tracking: bool = False) -> "IndexingStateResponse":
        data: Dict[str, Any] = state.to_dict()
        return cls(**data, is_tracking=is_tracking)


class IndexingStateListResponse(BaseModel):
    states: List[IndexingStateResponse]
    active_count: int


class CancelResponse(BaseModel):
    success: bool
    message: str
