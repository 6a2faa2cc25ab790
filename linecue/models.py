"""
Pydantic models for chapter snapshots and request/response validation.
"""

from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List, Tuple
from datetime import datetime


class FilterMode(str, Enum):
    """Which lines take part in a ripple."""
    CHAPTER = "chapter"      # every non-silent line
    CHARACTER = "character"  # lines of the anchor's role
    CV = "cv"                # lines voiced by the anchor role's CV


class CharacterRef(BaseModel):
    """Speaking role as seen by a chain computation."""
    id: str
    name: str
    cv_name: Optional[str] = None
    is_silent: bool = False

    class Config:
        frozen = True
        from_attributes = True


class LineState(BaseModel):
    """Immutable view of one script line."""
    id: str
    text: str = ""
    character: Optional[CharacterRef] = None
    audio_asset_id: Optional[str] = None
    sound_type: Optional[str] = None

    class Config:
        frozen = True

    @property
    def character_id(self) -> Optional[str]:
        return self.character.id if self.character else None

    def with_audio(self, audio_asset_id: Optional[str]) -> "LineState":
        """Copy of this line pointing at another asset (or none)."""
        return self.model_copy(update={"audio_asset_id": audio_asset_id})


class ChapterSnapshot(BaseModel):
    """Chapter loaded for one edit: ordered lines plus owning project."""
    id: str
    project_id: str
    title: str
    lines: Tuple[LineState, ...] = ()

    class Config:
        frozen = True

    def index_of(self, line_id: str) -> int:
        """Position of a line in the chapter, -1 if absent."""
        for index, line in enumerate(self.lines):
            if line.id == line_id:
                return index
        return -1


class ChainMember(BaseModel):
    """A line of a shift chain with its position in the chapter."""
    line: LineState
    index: int

    class Config:
        frozen = True


class EditResult(BaseModel):
    """Outcome of a committed timeline edit."""
    chapter: ChapterSnapshot
    created_asset_ids: List[str] = Field(default_factory=list)
    deleted_asset_ids: List[str] = Field(default_factory=list)


class SplitRequest(BaseModel):
    """Request model for splitting a line's audio."""
    split_seconds: float = Field(..., gt=0)
    filter_mode: FilterMode = FilterMode.CHAPTER


class ShiftRequest(BaseModel):
    """Request model for shift and merge operations."""
    filter_mode: FilterMode = FilterMode.CHAPTER


class LineResponse(BaseModel):
    """Response model for a script line."""
    id: str
    text: str
    character_id: Optional[str] = None
    character_name: Optional[str] = None
    cv_name: Optional[str] = None
    audio_asset_id: Optional[str] = None
    sound_type: Optional[str] = None


class ChapterResponse(BaseModel):
    """Response model for a chapter with its lines."""
    id: str
    project_id: str
    title: str
    lines: List[LineResponse]


class EditResponse(BaseModel):
    """Response model for a timeline edit."""
    chapter: ChapterResponse
    created_asset_ids: List[str]
    deleted_asset_ids: List[str]


class AudioAssetResponse(BaseModel):
    """Response model for an audio asset."""
    id: str
    line_id: Optional[str]
    audio_path: str
    duration: float
    sample_rate: int
    channels: int
    created_at: datetime

    class Config:
        from_attributes = True


class ClearAudioResponse(BaseModel):
    """Response model for clearing a chapter's audio."""
    chapter_id: str
    deleted: int


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str
    database: str
    assets_dir: str


def chapter_to_response(chapter: ChapterSnapshot) -> ChapterResponse:
    """Flatten a snapshot for the API."""
    return ChapterResponse(
        id=chapter.id,
        project_id=chapter.project_id,
        title=chapter.title,
        lines=[
            LineResponse(
                id=line.id,
                text=line.text,
                character_id=line.character_id,
                character_name=line.character.name if line.character else None,
                cv_name=line.character.cv_name if line.character else None,
                audio_asset_id=line.audio_asset_id,
                sound_type=line.sound_type,
            )
            for line in chapter.lines
        ],
    )


def edit_to_response(result: EditResult) -> EditResponse:
    """Flatten an edit result for the API."""
    return EditResponse(
        chapter=chapter_to_response(result.chapter),
        created_asset_ids=result.created_asset_ids,
        deleted_asset_ids=result.deleted_asset_ids,
    )
