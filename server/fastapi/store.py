"""
Supabase store

Feedback, curated restaurant profiles and chat logging go through the
PostgREST API with the service-role key. When SUPABASE_URL or the key is
missing, get_store() returns None and callers skip the database entirely.
"""

import logging
import re

import httpx

from config import CONFIG
from maps.geo import parse_lnglat
from models import FeedbackRequest

logger = logging.getLogger(__name__)


class DatabaseError(RuntimeError):
    """A database request failed."""


class SupabaseStore:
    def __init__(self, url: str, key: str, http_client: httpx.AsyncClient | None = None, timeout: float = 10.0):
        self.rest_url = f"{url.rstrip('/')}/rest/v1"
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, table: str, *, params=None, json=None, prefer: str | None = None):
        headers = dict(self._headers)
        if prefer:
            headers["Prefer"] = prefer
        try:
            response = await self._client.request(
                method, f"{self.rest_url}/{table}", params=params, json=json, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DatabaseError(f"{method} {table} failed: {e.response.status_code} {e.response.text}") from e
        except httpx.HTTPError as e:
            raise DatabaseError(f"{method} {table} failed: {e}") from e
        return response

    async def save_feedback(self, feedback: FeedbackRequest) -> None:
        """Insert or replace the rating for a message (one row per message_id)."""
        row = {
            "message_id": feedback.message_id,
            "session_id": feedback.session_id,
            "rating": feedback.rating,
            "feedback_text": feedback.feedback_text or None,
            "user_query": feedback.user_query or None,
        }
        await self._request(
            "POST",
            "message_feedback",
            params={"on_conflict": "message_id"},
            json=row,
            prefer="resolution=merge-duplicates,return=minimal",
        )

    async def get_curated_restaurants_by_slugs(self, slugs: list[str]) -> list[dict]:
        if not slugs:
            return []
        quoted = ",".join(f'"{slug}"' for slug in slugs)
        try:
            response = await self._request("GET", "restaurants", params={"select": "*", "slug": f"in.({quoted})"})
        except DatabaseError:
            logger.exception("Failed to fetch curated restaurants")
            return []
        data = response.json()
        return data if isinstance(data, list) else []

    async def log_chat_message(
        self,
        session_id: str,
        role: str,
        content: str,
        *,
        origin: str | None = None,
        tools_called: list[str] | None = None,
        tool_success: bool | None = None,
        is_fallback: bool = False,
        response_time_ms: int | None = None,
    ) -> None:
        """Best-effort: failures are logged and never reach the caller."""
        row = {
            "session_id": session_id,
            "role": role,
            "content": content,
            "tools_called": tools_called or None,
            "tool_success": tool_success,
            "is_fallback": is_fallback,
            "response_time_ms": response_time_ms,
            "user_language": detect_language(content) if role == "user" else None,
        }
        if origin:
            try:
                row["user_lng"], row["user_lat"] = parse_lnglat(origin)
            except ValueError:
                logger.debug("Ignoring malformed origin %r", origin)

        try:
            await self._request("POST", "chat_messages", json=row, prefer="return=minimal")
        except DatabaseError as e:
            logger.warning("Failed to log %s message for session %s: %s", role, session_id, e)
            return
        logger.debug("Logged %s message for session %s", role, session_id)


_CJK = re.compile(r"[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff\uac00-\ud7af]")
_KANA = re.compile(r"[\u3040-\u309f\u30a0-\u30ff]")
_HANGUL = re.compile(r"[\uac00-\ud7af]")
_FRENCH = re.compile(r"\b(le|la|les|un|une|des|je|tu|il|elle|nous|vous|ils|elles)\b", re.IGNORECASE)
_GERMAN = re.compile(r"\b(der|die|das|ich|du|er|sie|wir|ihr)\b", re.IGNORECASE)
_SPANISH = re.compile(r"\b(el|la|los|las|un|una|yo|tú|él|ella|nosotros|vosotros)\b", re.IGNORECASE)


def detect_language(text: str) -> str:
    """Rough language guess for analytics: zh/ja/ko by script share, then a few
    European function words, otherwise en."""
    if not text:
        return "en"

    if len(_CJK.findall(text)) / len(text) > 0.3:
        if _KANA.search(text):
            return "ja"
        if _HANGUL.search(text):
            return "ko"
        return "zh"

    if _FRENCH.search(text):
        return "fr"
    if _GERMAN.search(text):
        return "de"
    if _SPANISH.search(text):
        return "es"
    return "en"


_store: SupabaseStore | None = None


def get_store() -> SupabaseStore | None:
    global _store
    if not (CONFIG.supabase_url and CONFIG.supabase_key):
        return None
    if _store is None:
        _store = SupabaseStore(CONFIG.supabase_url, CONFIG.supabase_key, timeout=CONFIG.http_timeout_sec)
    return _store


async def close_store() -> None:
    global _store
    if _store is not None:
        await _store.aclose()
        _store = None
