"""Pydantic models for generation jobs and batches."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobStatus(str, Enum):
    """Lifecycle states of a generation job.

    pending -> processing -> completed | failed, with processing -> pending on
    a retriable failure. completed and failed are terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobRecord(BaseModel):
    """One subsection of one module waiting for (or done with) generation."""

    id: str
    job_batch_id: str
    target_document_id: Optional[str] = None
    module_identifier: str
    module_index: int
    module_title: str
    subsection_key: str
    subsection_title: str
    content_excerpt: str
    generation_context: Dict[str, Any] = Field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    attempt_count: int = 0
    last_error: Optional[str] = None
    claim_token: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    retry_not_before: Optional[datetime] = None
    position: int = 0  # enumeration order inside the batch, FIFO tie-break
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class _CamelModel(BaseModel):
    """API model serialised with camelCase keys, accepting either form on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BatchStatus(_CamelModel):
    """Job counts for one batch; the four states always sum to total."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0

    @classmethod
    def from_counts(cls, counts: Dict[str, int]) -> "BatchStatus":
        values = {status.value: int(counts.get(status.value, 0)) for status in JobStatus}
        return cls(**values, total=sum(values.values()))

    @property
    def is_settled(self) -> bool:
        """True once no job is pending or processing."""
        return self.pending == 0 and self.processing == 0


class ProcessResult(_CamelModel):
    """Outcome of one process_one call; per-job failures are reported, not raised."""

    processed: bool
    job_id: Optional[str] = None
    status: Optional[JobStatus] = None
    subsection_title: Optional[str] = None
    module_title: Optional[str] = None
    attempt_count: Optional[int] = None
    error: Optional[str] = None


class ModuleInput(_CamelModel):
    """A module as supplied by the authoring side: title plus raw markdown content."""

    id: Optional[str] = None
    title: str
    content: str = ""
    order: Optional[int] = None


class CourseMetadata(_CamelModel):
    """Course-level parameters; unknown keys are kept and passed to generation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    subject: Optional[str] = None
    exam_type: Optional[str] = None
    learner_level: Optional[str] = None
    academic_level: Optional[str] = None
    document_id: Optional[str] = None
    create_document: bool = False


class SubsectionRef(_CamelModel):
    key: str
    title: str


class ModuleSkeleton(_CamelModel):
    """Module shape written into a new course document before any merge."""

    id: str
    title: str
    order: int
    content: str
    subsections: List[SubsectionRef] = Field(default_factory=list)


class SubmitBatchRequest(_CamelModel):
    modules: List[ModuleInput]
    course_metadata: CourseMetadata = Field(default_factory=CourseMetadata)


class SubmitBatchResponse(_CamelModel):
    batch_id: Optional[str] = None
    total_jobs: int
    document_id: Optional[str] = None
    modules: List[ModuleSkeleton] = Field(default_factory=list)
    fallback_modules: List[str] = Field(default_factory=list)


class AttachDocumentRequest(_CamelModel):
    document_id: str
