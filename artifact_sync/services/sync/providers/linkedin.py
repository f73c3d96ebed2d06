"""
LinkedIn posts provider (RapidAPI)
Profile post pagination and normalization of RapidAPI post payloads

Post payloads differ between API versions (camelCase vs nested author
objects, urn vs postId); every shape difference is absorbed here.
"""
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from artifact_sync.core.config import settings
from artifact_sync.services.preprocessing.text import clean_text, truncate
from artifact_sync.services.sync.errors import NormalizationError, ProviderRequestFailed
from artifact_sync.services.sync.models import (
    ArtifactKind,
    CanonicalArtifact,
    FetchPage,
    LinkedInEngagement,
    LinkedInMedia,
    LinkedInPostMetadata,
    NormalizationContext,
    RawRecord,
    SyncWindow,
)
from artifact_sync.services.sync.pagination import PaginatedFetcher
from artifact_sync.services.sync.transport import RateLimitedTransport

logger = logging.getLogger(__name__)

SYNC_SOURCE = "rapidapi_linkedin"
SUMMARY_LENGTH = 120

PROFILE_URL_PATTERNS = [
    re.compile(r"linkedin\.com/in/([^/?#]+)", re.IGNORECASE),
    re.compile(r"linkedin\.com/pub/([^/?#]+)", re.IGNORECASE),
    re.compile(r"linkedin\.com/profile/view\?id=([^&#]+)", re.IGNORECASE),
]
HASHTAG_PATTERN = re.compile(r"#[\w-]+")
MENTION_PATTERN = re.compile(r"@[\w-]+")


def extract_username(term: str) -> str:
    """LinkedIn username from a profile URL; bare usernames pass through lowercased."""
    for pattern in PROFILE_URL_PATTERNS:
        match = pattern.search(term)
        if match:
            return match.group(1).lower()
    return term.strip().strip("/").lower()


# ============================================================================
# FETCHING
# ============================================================================

class LinkedInPostsFetcher(PaginatedFetcher):
    """Pages through a profile's posts via RapidAPI. Auth is the service API key, not a user grant."""

    def __init__(
        self,
        transport: RateLimitedTransport,
        page_size: int = 50,
        api_key: Optional[str] = None,
        api_host: Optional[str] = None,
    ):
        super().__init__(transport, page_size)
        self.api_key = api_key or settings.rapidapi_key
        self.api_host = api_host or settings.rapidapi_linkedin_host
        if not self.api_key:
            raise ValueError("RAPIDAPI_KEY is required for LinkedIn post sync")

    async def fetch(self, window: SyncWindow, cursor: Optional[str] = None, limit: Optional[int] = None) -> FetchPage:
        size = self.page_request_size(limit)
        params: Dict[str, Any] = {
            "username": extract_username(window.provider_query_terms[0]),
            "limit": size,
            "start_date": window.start_date.date().isoformat(),
        }
        if window.end_date:
            params["end_date"] = window.end_date.date().isoformat()
        if cursor:
            params["paginationToken"] = cursor

        url = f"https://{self.api_host}/get-profile-posts"
        response = await self.transport.request(
            "GET",
            url,
            headers={"X-RapidAPI-Key": self.api_key, "X-RapidAPI-Host": self.api_host},
            params=params,
        )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderRequestFailed(response.status_code, f"invalid JSON: {response.text[:200]}", url) from e

        # Response shapes seen: {"data": [...]}, {"posts": [...]}, or a bare list
        next_cursor = None
        if isinstance(data, list):
            items = data
        elif isinstance(data, dict):
            items = data.get("data") or data.get("posts") or []
            next_cursor = data.get("paginationToken") or data.get("next_cursor")
        else:
            items = []

        if not isinstance(items, list):
            logger.warning(f"Unexpected LinkedIn posts response structure: {str(data)[:200]}")
            items = []

        records = []
        for item in items:
            post_id = _post_id(item) if isinstance(item, dict) else None
            if post_id:
                records.append(RawRecord(external_id=post_id, payload=item))
            else:
                logger.warning("Skipping LinkedIn post without an id")

        logger.info(f"📰 LinkedIn page: {len(records)} posts for {params['username']}")
        return FetchPage(records=records, next_cursor=next_cursor or None, requested=size)


# ============================================================================
# NORMALIZATION
# ============================================================================

def _post_id(post: Dict[str, Any]) -> Optional[str]:
    for key in ("urn", "postId", "post_id", "id"):
        value = post.get(key)
        if value:
            return str(value)
    return None


def _text(source: Dict[str, Any], *keys: str) -> str:
    """First non-empty string under any of the keys. Other shapes count as missing."""
    for key in keys:
        value = source.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _author(post: Dict[str, Any]) -> Tuple[str, Optional[str]]:
    """(display name, username) from whichever author fields the payload carries."""
    author = post.get("author")
    if isinstance(author, dict):
        name = _text(author, "name") or " ".join(
            p for p in (_text(author, "firstName"), _text(author, "lastName")) if p
        )
        username = _text(author, "username") or (extract_username(author["url"]) if _text(author, "url") else None)
        return name.strip(), username.lower() if username else None

    name = _text(post, "authorName") or (author if isinstance(author, str) else "")
    username = _text(post, "authorUsername")
    if not username and _text(post, "authorProfileUrl"):
        username = extract_username(post["authorProfileUrl"])
    return name.strip(), username.lower() if username else None


def _tags(raw: Any) -> List[str]:
    return [tag for tag in raw if isinstance(tag, str) and tag] if isinstance(raw, list) else []


def _mentions(raw: Any) -> List[str]:
    """Mentions arrive as handles or as {name, username} objects; anything else is dropped."""
    if not isinstance(raw, list):
        return []
    mentions = []
    for item in raw:
        if isinstance(item, dict):
            item = _text(item, "name", "username")
        if isinstance(item, str) and item:
            mentions.append(item)
    return mentions


def normalize_post_type(raw_type: Optional[str], post: Dict[str, Any]) -> str:
    lower = (raw_type or "").lower()
    if post.get("reposted") or any(word in lower for word in ("reshare", "share", "repost")):
        return "reshare"
    if post.get("article") or "article" in lower or "newsletter" in lower:
        return "article"
    return "original"


def normalize_media_type(raw_type: Optional[str]) -> str:
    lower = (raw_type or "").lower()
    if "video" in lower or "mp4" in lower:
        return "video"
    if "article" in lower or "link" in lower:
        return "article"
    if "document" in lower or "pdf" in lower or "doc" in lower:
        return "document"
    return "image"


def _media(post: Dict[str, Any]) -> List[LinkedInMedia]:
    media = []
    for item in post.get("media") or []:
        if isinstance(item, dict):
            media.append(LinkedInMedia(
                type=normalize_media_type(_text(item, "type")),
                url=item.get("url"),
                title=item.get("title"),
            ))
    for item in post.get("image") or []:
        if isinstance(item, dict):
            media.append(LinkedInMedia(type="image", url=item.get("url")))
    video = post.get("video")
    for item in video if isinstance(video, list) else [video] if isinstance(video, dict) else []:
        media.append(LinkedInMedia(type="video", url=item.get("url")))
    return media


def _count(post: Dict[str, Any], *keys: str) -> int:
    for key in keys:
        value = post.get(key)
        if value is not None:
            try:
                return int(value)
            except (TypeError, ValueError):
                continue
    return 0


def _posted_at(post: Dict[str, Any], fallback: datetime) -> Tuple[datetime, Optional[str]]:
    timestamp = post.get("postedDateTimestamp")
    if timestamp:
        try:
            parsed = datetime.fromtimestamp(int(timestamp) / 1000, tz=timezone.utc)
            return parsed, parsed.isoformat()
        except (TypeError, ValueError, OverflowError, OSError):
            logger.debug(f"Unparsable postedDateTimestamp {timestamp!r}")

    raw = post.get("postedDate") or post.get("publishedDate") or post.get("posted_at")
    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed, raw
        except ValueError:
            logger.debug(f"Unparsable post date {raw!r}")
            return fallback, raw

    return fallback, None


def _relevance(
    author_name: str,
    author_username: Optional[str],
    content: str,
    mentions: List[str],
    context: NormalizationContext,
) -> Tuple[bool, str]:
    tracked = {extract_username(term) for term in context.tracked_terms}
    mention_handles = {m.lstrip("@").lower() for m in mentions}

    # Structured fields decide when present
    if author_username:
        if author_username in tracked:
            return True, "authored_by_contact"
    elif context.contact_name and _normalize_name(author_name) == _normalize_name(context.contact_name):
        return True, "authored_by_contact"

    if tracked & mention_handles:
        return False, "mentioned_contact"

    if context.contact_name:
        name = context.contact_name.strip().lower()
        if name and (name in content.lower() or any(name in m.lower() for m in mentions)):
            return False, "mentioned_contact"

    return False, "topic_relevant"


def _normalize_name(name: str) -> str:
    return re.sub(r"[^\w\s]", "", (name or "").lower()).strip()


def generate_content_summary(metadata: LinkedInPostMetadata) -> str:
    """Timeline line: truncated text, engagement, and the author when it is not the contact."""
    summary = truncate(metadata.content, SUMMARY_LENGTH)
    engagement = f"👍 {metadata.engagement.likes} 💬 {metadata.engagement.comments}"
    author = "" if metadata.is_author or not metadata.author else f" • by {metadata.author}"
    return f"{summary}\n{engagement}{author}".strip()


def normalize_linkedin_post(record: RawRecord, context: NormalizationContext) -> CanonicalArtifact:
    """
    Normalize a RapidAPI LinkedIn post into a canonical post artifact.

    Raises:
        NormalizationError: payload is empty or carries no post id
    """
    post = record.payload
    if not isinstance(post, dict) or not _post_id(post):
        raise NormalizationError(record.external_id, "post payload has no id")

    content = clean_text(_text(post, "text", "postContent", "content"))
    author_name, author_username = _author(post)

    hashtags = _tags(post.get("hashtags")) or HASHTAG_PATTERN.findall(content)
    mentions = _mentions(post.get("mentions")) or MENTION_PATTERN.findall(content)

    is_author, reason = _relevance(author_name, author_username, content, mentions, context)
    occurred_at, posted_at = _posted_at(post, context.synced_at)

    metadata = LinkedInPostMetadata(
        post_id=record.external_id,
        author=author_name,
        author_username=author_username,
        is_author=is_author,
        post_type=normalize_post_type(_text(post, "postType"), post),
        content=content,
        media=_media(post),
        engagement=LinkedInEngagement(
            likes=_count(post, "likesCount", "likeCount", "totalReactionCount"),
            comments=_count(post, "commentsCount", "commentCount"),
            shares=_count(post, "sharesCount", "repostsCount"),
        ),
        linkedin_url=_text(post, "postUrl", "url") or None,
        posted_at=posted_at,
        hashtags=list(hashtags),
        mentions=mentions,
        relevance_reason=reason,
    )

    return CanonicalArtifact(
        external_id=record.external_id,
        owner_user_id=context.owner_user_id,
        owner_contact_id=context.owner_contact_id,
        artifact_kind=ArtifactKind.LINKEDIN_POST,
        content_summary=generate_content_summary(metadata),
        occurred_at=occurred_at,
        provider_metadata=metadata,
        sync_source=SYNC_SOURCE,
        last_synced_at=context.synced_at,
    )
