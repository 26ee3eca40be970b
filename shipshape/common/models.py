"""Wire messages exchanged with the shipshape analysis service."""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Stage(str, Enum):
    """Point in the build at which an analysis runs."""

    PRE_BUILD = "PRE_BUILD"
    POST_BUILD = "POST_BUILD"


class TextRange(BaseModel):
    start_line: Optional[int] = None
    start_column: Optional[int] = None
    end_line: Optional[int] = None
    end_column: Optional[int] = None


class Location(BaseModel):
    """Where a note applies, relative to the repository root."""

    path: str = ""
    range: Optional[TextRange] = None


class Note(BaseModel):
    """A single analysis finding."""

    category: str
    subcategory: Optional[str] = None
    location: Optional[Location] = None
    description: str = ""


class AnalysisFailure(BaseModel):
    """An analyzer reporting that it could not complete its analysis."""

    category: str
    failure_message: str = ""


class AnalyzeResponse(BaseModel):
    failure: List[AnalysisFailure] = Field(default_factory=list)
    note: List[Note] = Field(default_factory=list)


class ShipshapeResponse(BaseModel):
    """One element of the server-streamed Run call."""

    analyze_response: List[AnalyzeResponse] = Field(default_factory=list)


class ShipshapeContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    repo_root: str = Field(description="Repository root as seen inside the service container")
    file_path: List[str] = Field(default_factory=list, description="Paths relative to repo_root; empty means all")


class ShipshapeRequest(BaseModel):
    """Analysis request sent once per stage."""

    model_config = ConfigDict(frozen=True)

    triggered_category: List[str] = Field(default_factory=list)
    shipshape_context: ShipshapeContext
    event: str
    stage: Stage = Stage.PRE_BUILD
