"""
Data models for Gemini Chat Exporter
Batch/job state, signaling payloads, download handles and the exported transcript
"""
from typing import Optional, List, Literal
from datetime import datetime
from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from enum import Enum


class JobState(str, Enum):
    """Lifecycle of one export job"""
    PENDING = "Pending"
    SPAWNING = "Spawning"
    RUNNING = "Running"
    AWAITING_DOWNLOADS = "AwaitingDownloads"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)

    @property
    def is_active(self) -> bool:
        return self in (JobState.SPAWNING, JobState.RUNNING, JobState.AWAITING_DOWNLOADS)


class DownloadState(str, Enum):
    """States reported by the download subsystem"""
    INITIATED = "initiated"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    INTERRUPTED = "interrupted"

    @property
    def is_terminal(self) -> bool:
        return self in (DownloadState.COMPLETE, DownloadState.INTERRUPTED)


class SignalType(str, Enum):
    """Messages understood by the orchestrator"""
    START_BATCH_EXPORT = "START_BATCH_EXPORT"
    STOP_BATCH_EXPORT = "STOP_BATCH_EXPORT"
    GET_BATCH_STATUS = "GET_BATCH_STATUS"
    EXPORT_COMPLETED = "EXPORT_COMPLETED"
    EXPORT_FAILED = "EXPORT_FAILED"


SPAWN_ERROR_REASON = "spawnError"


class ExportJob(BaseModel):
    """One conversation export task"""
    id: str = Field(..., min_length=1, description="Conversation identifier, kept exactly as supplied")
    state: JobState = Field(default=JobState.PENDING)
    error: Optional[str] = Field(None, description="Failure reason, set only when failed")

    @field_validator('id')
    @classmethod
    def validate_id(cls, v):
        if not v.strip():
            raise ValueError("Job id cannot be blank")
        return v


class JobResult(BaseModel):
    """Ledger entry for a job that reached a terminal state"""
    id: str
    outcome: Literal["Completed", "Failed"]
    reason: Optional[str] = None
    downloadsStarted: Optional[bool] = Field(None, description="False when the download wait timed out")
    finishedAt: datetime = Field(default_factory=datetime.now)

    @property
    def is_completed(self) -> bool:
        return self.outcome == "Completed"


class BatchParams(BaseModel):
    """Per-batch settings; unset values fall back to configuration"""
    scopeSelector: Optional[str] = Field(None, description="Account selector, e.g. '0' in /u/0/")
    downloadWaitBudget: Optional[float] = Field(None, ge=0)
    settleDelay: Optional[float] = Field(None, ge=0)
    interJobDelay: Optional[float] = Field(None, ge=0)
    closeWorkerAfterJob: Optional[bool] = None
    extraQuery: dict = Field(default_factory=dict, description="Additional session-scoping query parameters")


class StartResult(BaseModel):
    """Response to START_BATCH_EXPORT"""
    ok: bool
    error: Optional[str] = None


class WorkerSignal(BaseModel):
    """Completion or failure notification emitted by a worker"""
    type: SignalType
    jobId: str = Field(..., min_length=1)
    reason: Optional[str] = None

    @field_validator('type')
    @classmethod
    def worker_signal_types_only(cls, v):
        if v not in (SignalType.EXPORT_COMPLETED, SignalType.EXPORT_FAILED):
            raise ValueError(f"Not a worker signal: {v.value}")
        return v

    @model_validator(mode='after')
    def default_failure_reason(self):
        if self.type == SignalType.EXPORT_FAILED and not self.reason:
            self.reason = "unknown error"
        return self

    @classmethod
    def completed(cls, job_id: str) -> "WorkerSignal":
        return cls(type=SignalType.EXPORT_COMPLETED, jobId=job_id)

    @classmethod
    def failed(cls, job_id: str, reason: str) -> "WorkerSignal":
        return cls(type=SignalType.EXPORT_FAILED, jobId=job_id, reason=reason)

    @property
    def is_failure(self) -> bool:
        return self.type == SignalType.EXPORT_FAILED


class ArtifactRef(BaseModel):
    """Temporary file backing a generated download"""
    model_config = ConfigDict(frozen=True)

    path: str
    jobId: str

    @property
    def url(self) -> str:
        return Path(self.path).resolve().as_uri()


class DownloadHandle(BaseModel):
    """Opaque reference to one transfer started for a job"""
    model_config = ConfigDict(frozen=True)

    downloadId: int = Field(..., ge=0)
    jobId: str
    destination: str


class MediaFile(BaseModel):
    """File attached to, or generated in, a message"""
    type: Literal["video", "image"]
    url: str
    filename: Optional[str] = None


class ChatMessage(BaseModel):
    """One exported message"""
    role: Literal["user", "assistant"]
    content_type: Literal["text", "mixed"] = "text"
    content: str = ""
    files: Optional[List[MediaFile]] = None
    model_thoughts: Optional[str] = None

    @model_validator(mode='after')
    def mixed_when_files(self):
        if self.files:
            self.content_type = "mixed"
        return self


class Transcript(BaseModel):
    """Exported conversation document"""
    title: str = "Untitled Conversation"
    round_count: int = Field(default=0, ge=0)
    total_count: int = Field(default=0, ge=0)
    data: List[ChatMessage] = Field(default_factory=list)

    @classmethod
    def from_messages(cls, title: str, messages: List[ChatMessage]) -> "Transcript":
        user_count = sum(1 for m in messages if m.role == "user")
        assistant_count = sum(1 for m in messages if m.role == "assistant")
        return cls(
            title=title,
            round_count=min(user_count, assistant_count),
            total_count=len(messages),
            data=list(messages)
        )

    def to_document(self) -> dict:
        return self.model_dump(mode='json', exclude_none=True)


class DownloadRequest(BaseModel):
    """Media file queued for download after extraction"""
    kind: Literal["video", "image"]
    url: str
    conversationId: str
    messageIndex: int = Field(..., ge=0)
    fileIndex: int = Field(..., ge=0)
    filename: Optional[str] = None
    isGenerated: bool = False


class ExtractionResult(BaseModel):
    """Transcript plus the media it references"""
    transcript: Transcript
    downloads: List[DownloadRequest] = Field(default_factory=list)

    @property
    def videos(self) -> List[DownloadRequest]:
        return [d for d in self.downloads if d.kind == "video"]

    @property
    def images(self) -> List[DownloadRequest]:
        return [d for d in self.downloads if d.kind == "image"]


# Export all models
__all__ = [
    'JobState', 'DownloadState', 'SignalType', 'SPAWN_ERROR_REASON',
    'ExportJob', 'JobResult', 'BatchParams', 'StartResult', 'WorkerSignal',
    'ArtifactRef', 'DownloadHandle', 'MediaFile', 'ChatMessage', 'Transcript',
    'DownloadRequest', 'ExtractionResult'
]
