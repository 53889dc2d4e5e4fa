import re
import logging
import asyncio
from typing import Optional, Dict, Any

import httpx
from yt_dlp import YoutubeDL

from partysync.config import Settings
from partysync.exceptions import TrackResolutionError
from partysync.models.room import Track

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Invalid YouTube video ID or video not found."

_VIDEO_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
_VIDEO_URL = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?|shorts)/|.*[?&]v=)|youtu\.be/)([A-Za-z0-9_-]{11})"
)
_ISO_DURATION = re.compile(r"^P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?$")


def extract_video_id(reference: str) -> Optional[str]:
    """Accept a bare video id or any of the usual YouTube URL shapes."""
    reference = (reference or "").strip()
    if _VIDEO_ID.match(reference):
        return reference
    match = _VIDEO_URL.search(reference)
    return match.group(1) if match else None


def parse_duration_ms(duration: Optional[str]) -> int:
    # "PT1H2M3S" -> 3723000; anything unreadable counts as 0
    match = _ISO_DURATION.match(duration or "")
    if not match:
        return 0
    days, hours, minutes, seconds = (int(part or 0) for part in match.groups())
    return (((days * 24 + hours) * 60 + minutes) * 60 + seconds) * 1000


def _track_from_api_item(item: Dict[str, Any], added_by: str) -> Track:
    snippet = item["snippet"]
    thumbnails = snippet.get("thumbnails") or {}
    thumbnail = (thumbnails.get("high") or thumbnails.get("default") or {}).get("url")
    return Track(
        id=item["id"],
        title=snippet["title"],
        author=snippet.get("channelTitle"),
        thumbnail_url=thumbnail,
        duration_ms=parse_duration_ms(item["contentDetails"].get("duration")),
        added_by=added_by,
    )


def _extract_info(video_id: str) -> Optional[Dict[str, Any]]:
    ydl_opts = {
        'quiet': True,
        'noplaylist': True,
        'skip_download': True,
        'source_address': '0.0.0.0', # bind to ipv4
    }
    with YoutubeDL(ydl_opts) as ydl:
        try:
            return ydl.extract_info(f"https://www.youtube.com/watch?v={video_id}", download=False)
        except Exception as e:
            logger.error(f"yt-dlp extraction error for {video_id}: {e}")
            return None


class TrackResolver:
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self._settings = settings
        self._client = client

    async def resolve(self, reference: str, added_by: str) -> Track:
        video_id = extract_video_id(reference)
        if not video_id:
            raise TrackResolutionError(NOT_FOUND_MESSAGE)
        if self._settings.youtube_api_key:
            return await self._resolve_with_api(video_id, added_by)
        return await self._resolve_with_ytdlp(video_id, added_by)

    async def _resolve_with_api(self, video_id: str, added_by: str) -> Track:
        params = {
            "part": "snippet,contentDetails",
            "id": video_id,
            "key": self._settings.youtube_api_key,
        }
        try:
            if self._client is not None:
                response = await self._client.get(self._settings.youtube_api_url, params=params)
            else:
                async with httpx.AsyncClient(timeout=self._settings.metadata_timeout_seconds) as client:
                    response = await client.get(self._settings.youtube_api_url, params=params)
            response.raise_for_status()
            items = response.json().get("items") or []
        except httpx.HTTPError as e:
            logger.error(f"Error fetching YouTube video details for ID {video_id}: {e}")
            raise TrackResolutionError(NOT_FOUND_MESSAGE) from e

        if not items or "snippet" not in items[0] or "contentDetails" not in items[0]:
            logger.warning(f"No video found with ID: {video_id}")
            raise TrackResolutionError(NOT_FOUND_MESSAGE)
        return _track_from_api_item(items[0], added_by)

    async def _resolve_with_ytdlp(self, video_id: str, added_by: str) -> Track:
        """Look the video up with yt-dlp in a thread pool to avoid blocking."""
        loop = asyncio.get_running_loop()
        info = await loop.run_in_executor(None, _extract_info, video_id)
        if not info:
            raise TrackResolutionError(NOT_FOUND_MESSAGE)
        return Track(
            id=info.get("id") or video_id,
            title=info.get("title", "Unknown Track"),
            author=info.get("uploader") or info.get("channel"),
            thumbnail_url=info.get("thumbnail"),
            duration_ms=int((info.get("duration") or 0) * 1000),
            added_by=added_by,
        )
