from typing import Any

from pydantic import BaseModel, Field

from reqport.services.conflicts import Resolution
from reqport.services.executor import DuplicateHandling, EnvironmentMode


class FormatOut(BaseModel):
    name: str
    display_name: str
    file_extensions: list[str]


class DetectionOut(BaseModel):
    format: str | None
    version: str | None = None
    is_valid: bool
    confidence: float

    model_config = {"from_attributes": True}


class WarningOut(BaseModel):
    code: str
    message: str
    item_name: str | None = None

    model_config = {"from_attributes": True}


class ConflictOut(BaseModel):
    entity_name: str
    existing_id: str
    incoming_display_name: str
    incoming_variable_count: int
    resolution: Resolution | None = None


class ImportCounts(BaseModel):
    folders: int
    requests: int
    environments: int


class SessionOut(BaseModel):
    id: str
    stage: str
    filename: str | None = None
    detection: DetectionOut | None = None
    collection_name: str | None = None
    counts: ImportCounts | None = None
    tree: dict[str, Any] | None = None
    environments: list[str] = []
    warnings: list[WarningOut] = []
    conflicts: list[ConflictOut] = []
    can_commit: bool = False


class ResolutionIn(BaseModel):
    name: str = Field(min_length=1)
    resolution: Resolution


class ResolutionsUpdate(BaseModel):
    resolutions: list[ResolutionIn]


class ExecuteRequest(BaseModel):
    environment_mode: EnvironmentMode = EnvironmentMode.COLLECTION
    duplicate_handling: DuplicateHandling = DuplicateHandling.RENAME
    include_disabled: bool = False


class ExecutionOut(BaseModel):
    collection_id: str | None
    folder_count: int
    request_count: int
    environment_count: int
    warnings: list[WarningOut] = []

    model_config = {"from_attributes": True}
