"""
Sync engine data model
Credentials, windows, raw/canonical records and the per-run progress report
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Bound on stored per-error strings; the counter keeps counting past it
MAX_ERROR_DETAILS = 50


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Provider(str, Enum):
    GMAIL = "gmail"
    LINKEDIN = "linkedin"


class ArtifactKind(str, Enum):
    EMAIL = "email"
    LINKEDIN_POST = "linkedin_post"


class SyncMode(str, Enum):
    """
    Where known_ids come from for a run.

    refresh:      caller-supplied ids only; every fetched record is upserted
    incremental:  caller ids plus ids already stored for the contact
    full_resync:  no known ids and the early-stop heuristic is off
    """
    REFRESH = "refresh"
    INCREMENTAL = "incremental"
    FULL_RESYNC = "full_resync"


class SyncStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


class RunState(str, Enum):
    IDLE = "idle"
    TOKEN_READY = "token_ready"
    PAGING = "paging"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


# ============================================================================
# CREDENTIALS & WINDOWS
# ============================================================================

class Credential(BaseModel):
    """OAuth grant for one (user, provider). Only TokenManager writes new tokens."""
    user_id: str
    provider: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None

    utc_expiry = field_validator("expires_at")(as_utc)

    def expires_within(self, now: datetime, buffer: timedelta) -> bool:
        """True when the token is missing, expired, or expires inside the buffer."""
        if not self.access_token or self.expires_at is None:
            return True
        return self.expires_at <= now + buffer


class SyncWindow(BaseModel):
    """Query bounds for one run. Frozen: a run never changes its window."""
    model_config = ConfigDict(frozen=True)

    start_date: datetime
    end_date: Optional[datetime] = None
    max_results: int = Field(default=500, gt=0)
    provider_query_terms: Tuple[str, ...] = Field(min_length=1)

    utc_bounds = field_validator("start_date", "end_date")(as_utc)

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


# ============================================================================
# RAW RECORDS
# ============================================================================

class RawRecord(BaseModel):
    """One provider item. payload may be a stub until the fetcher hydrates it."""
    external_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class FetchPage(BaseModel):
    records: List[RawRecord] = Field(default_factory=list)
    next_cursor: Optional[str] = None
    requested: int


# ============================================================================
# CANONICAL ARTIFACTS
# ============================================================================

class EmailParticipant(BaseModel):
    email: str
    name: str = ""


class EmailAttachment(BaseModel):
    attachment_id: str
    filename: str
    mime_type: str
    size: int = 0


class EmailArtifactMetadata(BaseModel):
    kind: Literal["email"] = "email"
    message_id: str
    thread_id: str = ""
    subject: str = ""
    sender: EmailParticipant
    to: List[EmailParticipant] = Field(default_factory=list)
    cc: List[EmailParticipant] = Field(default_factory=list)
    bcc: List[EmailParticipant] = Field(default_factory=list)
    body_text: str = ""
    body_html: str = ""
    snippet: str = ""
    in_reply_to: Optional[str] = None
    references: List[str] = Field(default_factory=list)
    labels: List[str] = Field(default_factory=list)
    is_read: bool = True
    is_starred: bool = False
    size_estimate: Optional[int] = None
    history_id: Optional[str] = None
    attachments: List[EmailAttachment] = Field(default_factory=list)
    has_attachments: bool = False
    is_author: bool = False
    relevance_reason: str = "topic_relevant"


class LinkedInMedia(BaseModel):
    type: Literal["image", "video", "article", "document"]
    url: Optional[str] = None
    title: Optional[str] = None


class LinkedInEngagement(BaseModel):
    likes: int = 0
    comments: int = 0
    shares: int = 0


class LinkedInPostMetadata(BaseModel):
    kind: Literal["linkedin_post"] = "linkedin_post"
    post_id: str
    author: str = ""
    author_username: Optional[str] = None
    is_author: bool = False
    post_type: Literal["original", "reshare", "article"] = "original"
    content: str = ""
    media: List[LinkedInMedia] = Field(default_factory=list)
    engagement: LinkedInEngagement = Field(default_factory=LinkedInEngagement)
    linkedin_url: Optional[str] = None
    posted_at: Optional[str] = None
    hashtags: List[str] = Field(default_factory=list)
    mentions: List[str] = Field(default_factory=list)
    relevance_reason: str = "topic_relevant"


ProviderMetadata = Annotated[
    Union[EmailArtifactMetadata, LinkedInPostMetadata],
    Field(discriminator="kind"),
]


class CanonicalArtifact(BaseModel):
    """
    Normalized record handed to the sink.
    Identity is (owner_contact_id, external_id, artifact_kind).
    """
    external_id: str
    owner_user_id: str
    owner_contact_id: str
    artifact_kind: ArtifactKind
    content_summary: str
    occurred_at: datetime
    provider_metadata: ProviderMetadata
    sync_source: str
    last_synced_at: datetime


class NormalizationContext(BaseModel):
    """Everything a normalizer may know besides the payload itself."""
    owner_user_id: str
    owner_contact_id: str
    contact_name: Optional[str] = None
    tracked_terms: List[str] = Field(default_factory=list)
    synced_at: datetime


# ============================================================================
# PROGRESS & STATE
# ============================================================================

class SyncProgress(BaseModel):
    """Accumulator for one run, returned to the caller in every outcome."""
    user_id: str
    contact_id: str
    provider: str
    mode: SyncMode = SyncMode.REFRESH

    total_seen: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    duplicates_skipped: int = 0
    errors: int = 0
    pages_fetched: int = 0

    state: RunState = RunState.IDLE
    status: Optional[SyncStatus] = None
    message: str = ""
    stop_reason: Optional[str] = None
    requires_reauth: bool = False
    error_details: List[str] = Field(default_factory=list)

    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def record_error(self, detail: str) -> None:
        self.errors += 1
        if len(self.error_details) < MAX_ERROR_DETAILS:
            self.error_details.append(detail)


class SyncState(BaseModel):
    """Persisted summary of the latest run for (user, provider)."""
    user_id: str
    provider: str
    status: str
    last_synced_at: Optional[datetime] = None
    error_message: Optional[str] = None
    last_progress: Optional[Dict[str, Any]] = None
