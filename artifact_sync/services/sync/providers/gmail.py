"""
Gmail provider
Message search pagination and normalization of Gmail API messages

Gmail's search endpoint returns only {id, threadId} stubs; full messages are
fetched by hydrate(), which the engine calls only for records that are not
already known.
"""
import logging
from datetime import datetime, timezone
from email.utils import getaddresses, parsedate_to_datetime
from typing import Any, Dict, List, Optional, Tuple

from artifact_sync.core.config import settings
from artifact_sync.services.preprocessing.text import clean_text, decode_base64url, html_to_text, truncate
from artifact_sync.services.sync.errors import NormalizationError, ProviderRequestFailed
from artifact_sync.services.sync.models import (
    ArtifactKind,
    CanonicalArtifact,
    EmailArtifactMetadata,
    EmailAttachment,
    EmailParticipant,
    FetchPage,
    NormalizationContext,
    RawRecord,
    SyncWindow,
)
from artifact_sync.services.sync.pagination import PaginatedFetcher, TokenGetter
from artifact_sync.services.sync.transport import RateLimitedTransport

logger = logging.getLogger(__name__)

SYNC_SOURCE = "gmail_api"
SUMMARY_LENGTH = 200


# ============================================================================
# FETCHING
# ============================================================================

def build_gmail_query(window: SyncWindow) -> str:
    """
    Gmail search syntax for a window.

    Example:
        (from:a@x.com OR to:a@x.com) after:1700000000 before:1702592000
    """
    terms = " OR ".join(f"from:{term} OR to:{term}" for term in window.provider_query_terms)
    query = f"({terms}) after:{int(window.start_date.timestamp())}"
    if window.end_date:
        query += f" before:{int(window.end_date.timestamp())}"
    return query


class GmailMessageFetcher(PaginatedFetcher):
    """Pages through users.messages.list for the authenticated mailbox."""

    def __init__(
        self,
        transport: RateLimitedTransport,
        get_access_token: TokenGetter,
        page_size: int = 50,
        api_base: Optional[str] = None,
    ):
        super().__init__(transport, page_size)
        self.get_access_token = get_access_token
        self.api_base = (api_base or settings.gmail_api_base).rstrip("/")

    async def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {await self.get_access_token()}"}

    async def fetch(self, window: SyncWindow, cursor: Optional[str] = None, limit: Optional[int] = None) -> FetchPage:
        size = self.page_request_size(limit)
        params: Dict[str, Any] = {"q": build_gmail_query(window), "maxResults": size}
        if cursor:
            params["pageToken"] = cursor

        url = f"{self.api_base}/users/me/messages"
        response = await self.transport.request("GET", url, headers=await self._headers(), params=params)
        data = _json(response, url)

        records = [
            RawRecord(external_id=ref["id"], payload={"id": ref["id"], "threadId": ref.get("threadId", "")})
            for ref in data.get("messages") or []
            if ref.get("id")
        ]
        logger.info(f"📬 Gmail page: {len(records)} messages (cursor: {cursor[:20] if cursor else 'none'}...)")
        return FetchPage(records=records, next_cursor=data.get("nextPageToken"), requested=size)

    async def hydrate(self, record: RawRecord) -> RawRecord:
        url = f"{self.api_base}/users/me/messages/{record.external_id}"
        response = await self.transport.request("GET", url, headers=await self._headers(), params={"format": "full"})
        return RawRecord(external_id=record.external_id, payload=_json(response, url))


def _json(response, url: str) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise ProviderRequestFailed(response.status_code, f"invalid JSON: {response.text[:200]}", url) from e
    if not isinstance(data, dict):
        raise ProviderRequestFailed(response.status_code, "unexpected response shape", url)
    return data


# ============================================================================
# NORMALIZATION
# ============================================================================

def parse_participants(header_value: str) -> List[EmailParticipant]:
    """Parse an address header ("Name <a@x.com>, b@y.com") into participants."""
    if not header_value:
        return []
    participants = []
    for name, address in getaddresses([header_value]):
        if address:
            participants.append(EmailParticipant(email=address.strip().lower(), name=name.strip().strip("\"'")))
    return participants


def _walk_parts(part: Dict[str, Any], text: List[str], markup: List[str], attachments: List[EmailAttachment]) -> None:
    mime_type = (part.get("mimeType") or "").lower()
    body = part.get("body") or {}

    if part.get("filename") and body.get("attachmentId"):
        attachments.append(EmailAttachment(
            attachment_id=body["attachmentId"],
            filename=part["filename"],
            mime_type=mime_type,
            size=body.get("size") or 0,
        ))
    elif body.get("data") and mime_type == "text/plain":
        text.append(decode_base64url(body["data"]))
    elif body.get("data") and mime_type == "text/html":
        markup.append(decode_base64url(body["data"]))

    for child in part.get("parts") or []:
        if not isinstance(child, dict):
            raise ValueError(f"malformed MIME part: {child!r:.50}")
        _walk_parts(child, text, markup, attachments)


def extract_bodies(payload: Dict[str, Any]) -> Tuple[str, str, List[EmailAttachment]]:
    """
    Decode every text/plain and text/html part of a (possibly nested) multipart payload.

    Returns (text, html, attachments).
    """
    text: List[str] = []
    markup: List[str] = []
    attachments: List[EmailAttachment] = []
    _walk_parts(payload, text, markup, attachments)
    return clean_text("\n".join(text)), "\n".join(markup), attachments


def _occurred_at(message: Dict[str, Any], date_header: str, fallback: datetime) -> datetime:
    internal_date = message.get("internalDate")
    if internal_date:
        try:
            return datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError):
            logger.debug(f"Unparsable internalDate {internal_date!r} on {message.get('id')}")

    if date_header:
        try:
            parsed = parsedate_to_datetime(date_header)
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except (TypeError, ValueError, IndexError):
            logger.debug(f"Unparsable Date header {date_header!r} on {message.get('id')}")

    return fallback


def _relevance(
    sender: EmailParticipant,
    recipients: List[EmailParticipant],
    subject: str,
    body: str,
    context: NormalizationContext,
) -> Tuple[bool, str]:
    tracked = {term.strip().lower() for term in context.tracked_terms}

    if sender.email in tracked:
        return True, "authored_by_contact"
    if any(r.email in tracked for r in recipients):
        return False, "participant"

    if context.contact_name:
        name = context.contact_name.strip().lower()
        if name and (name == sender.name.lower() or name in subject.lower() or name in body.lower()):
            return False, "mentioned_contact"

    return False, "topic_relevant"


def normalize_gmail_message(record: RawRecord, context: NormalizationContext) -> CanonicalArtifact:
    """
    Normalize a full Gmail API message (format=full) into a canonical email artifact.

    Prefers text/plain over text/html; occurred_at falls back from internalDate
    to the Date header to ingestion time.

    Raises:
        NormalizationError: payload missing or not a Gmail message
    """
    message = record.payload
    payload = message.get("payload")
    if not isinstance(payload, dict):
        raise NormalizationError(record.external_id, "message payload is missing")

    headers = {}
    for header in payload.get("headers") or []:
        if isinstance(header, dict) and isinstance(header.get("name"), str):
            value = header.get("value")
            headers[header["name"].lower()] = value if isinstance(value, str) else ""

    try:
        body_text, body_html, attachments = extract_bodies(payload)
    except (ValueError, TypeError, AttributeError) as e:
        raise NormalizationError(record.external_id, str(e)) from e

    readable_body = body_text or html_to_text(body_html)

    sender_list = parse_participants(headers.get("from", ""))
    sender = sender_list[0] if sender_list else EmailParticipant(email="unknown@unknown.com")
    to = parse_participants(headers.get("to", ""))
    cc = parse_participants(headers.get("cc", ""))
    bcc = parse_participants(headers.get("bcc", ""))

    subject = clean_text(headers.get("subject", ""))
    snippet = message.get("snippet")
    snippet = clean_text(snippet) if isinstance(snippet, str) else ""
    is_author, reason = _relevance(sender, to + cc + bcc, subject, readable_body, context)

    labels = message.get("labelIds") or []
    metadata = EmailArtifactMetadata(
        message_id=record.external_id,
        thread_id=message.get("threadId") or "",
        subject=subject,
        sender=sender,
        to=to,
        cc=cc,
        bcc=bcc,
        body_text=readable_body,
        body_html=body_html,
        snippet=snippet,
        in_reply_to=headers.get("in-reply-to") or None,
        references=headers.get("references", "").split(),
        labels=labels,
        is_read="UNREAD" not in labels,
        is_starred="STARRED" in labels,
        size_estimate=message.get("sizeEstimate"),
        history_id=message.get("historyId"),
        attachments=attachments,
        has_attachments=bool(attachments),
        is_author=is_author,
        relevance_reason=reason,
    )

    summary = snippet or truncate(readable_body, SUMMARY_LENGTH) or subject or "(no content)"

    return CanonicalArtifact(
        external_id=record.external_id,
        owner_user_id=context.owner_user_id,
        owner_contact_id=context.owner_contact_id,
        artifact_kind=ArtifactKind.EMAIL,
        content_summary=summary,
        occurred_at=_occurred_at(message, headers.get("date", ""), context.synced_at),
        provider_metadata=metadata,
        sync_source=SYNC_SOURCE,
        last_synced_at=context.synced_at,
    )
