from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class RunOptionsModel(BaseModel):
    output: str | None = None
    level: int | None = Field(default=None, ge=1, le=22)
    format: Literal["xci", "nsp", "xcz", "nsz"] | None = None
    nodelta: bool = False
    buffer: int | None = Field(default=None, ge=1)
    trim_mode: Literal["trim", "super_trim", "untrim"] | None = None


class RunRequest(BaseModel):
    operation: str = Field(min_length=1)
    files: list[str] = Field(min_length=1)
    options: RunOptionsModel = Field(default_factory=RunOptionsModel)


class RunAcceptedResponse(BaseModel):
    accepted: bool
    runner: str
    operation: str
    running_operation: str | None = None


class RunnerStatusResponse(BaseModel):
    runner: str
    running: bool
    operation: str | None = None
    state: str
    batch_index: int | None = None
    batch_count: int | None = None
    tools_dir: str | None = None


class RuntimeConfigResponse(BaseModel):
    tools_dir: str | None = None
    config_path: str


class RuntimeConfigUpdateRequest(BaseModel):
    tools_dir: str | None = None
    clear_tools_dir: bool = False


class ToolsDirectoryValidationResponse(BaseModel):
    path: str
    valid: bool
    detail: str | None = None


class EventResponse(BaseModel):
    id: int
    type: str
    runner: str
    created_at: str
    data: dict[str, Any]
