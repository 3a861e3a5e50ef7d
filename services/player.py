"""
services/player.py

Course player: which module/content item is active, and how each content
type should be shown. The portal turns descriptors into markup; nothing here
touches the network.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional

PLAYBACK_SPEEDS = [0.75, 1, 1.25, 1.5, 2]

_YOUTUBE_HOST = re.compile(r"youtu(\.be|be\.com)/", re.IGNORECASE)
_YOUTUBE_QUERY_ID = re.compile(r"[?&]v=([^&#]+)")
_YOUTUBE_SHORT_ID = re.compile(r"youtu\.be/([^?&#]+)")
_IMAGE_EXT = re.compile(r"\.(png|jpe?g|gif|webp|svg)$", re.IGNORECASE)


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def is_youtube_url(url: Optional[str]) -> bool:
    return bool(_YOUTUBE_HOST.search(url or ""))


def youtube_video_id(url: Optional[str]) -> Optional[str]:
    text = url or ""
    match = _YOUTUBE_QUERY_ID.search(text) or _YOUTUBE_SHORT_ID.search(text)
    return match.group(1) if match else None


def youtube_embed_url(video_id: str, start_seconds: Any = 0) -> str:
    start = max(0, _safe_int(start_seconds))
    return f"https://www.youtube.com/embed/{video_id}?start={start}&rel=0&modestbranding=1"


def format_timestamp(seconds: Any) -> str:
    total = max(0, _safe_int(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    # Wraps at 24h like a clock.
    return f"{hours % 24:02d}:{minutes:02d}:{secs:02d}"


def image_files(files: Any) -> list[dict]:
    if not isinstance(files, list):
        return []
    return [
        f for f in files
        if str(f.get("fileType") or "").startswith("image") or _IMAGE_EXT.search(f.get("url") or "")
    ]


def _video(content: dict, start_seconds: Any) -> dict[str, Any]:
    url = content.get("url") or ""
    title = content.get("title") or "Video"
    chapters = [
        {
            "title": ch.get("title"),
            "time": _safe_int(ch.get("time")),
            "label": format_timestamp(ch.get("time")),
        }
        for ch in (content.get("chapters") or [])
    ]

    if is_youtube_url(url):
        video_id = youtube_video_id(url)
        if not video_id:
            return {"kind": "invalid", "title": title, "message": "Invalid YouTube URL"}
        return {
            "kind": "youtube",
            "title": title,
            "video_id": video_id,
            "embed_url": youtube_embed_url(video_id, start_seconds),
            "chapters": chapters,
        }

    return {
        "kind": "html5_video",
        "title": title,
        "src": url,
        "speeds": list(PLAYBACK_SPEEDS),
        "chapters": chapters,
    }


def describe_content(content: Optional[dict], start_seconds: Any = 0) -> dict[str, Any]:
    if not content:
        return {"kind": "empty", "message": "No content in this module."}

    ctype = content.get("type")
    if ctype == "video":
        return _video(content, start_seconds)

    if ctype == "pdf":
        url = content.get("url")
        if not url:
            return {"kind": "pdf", "url": None, "message": "No PDF provided"}
        return {"kind": "pdf", "url": url}

    if ctype == "text":
        text = content.get("text") or content.get("body") or content.get("content")
        if not text:
            return {"kind": "text", "text": None, "message": "No text content"}
        return {"kind": "text", "text": text}

    if ctype == "image":
        files = content.get("files")
        if not (isinstance(files, list) and files):
            files = [{
                "url": content.get("url"),
                "filename": content.get("title") or "image",
                "fileType": content.get("fileType") or "",
            }]
        images = image_files(files)
        if not images:
            return {"kind": "images", "images": [], "message": "No images"}
        return {
            "kind": "images",
            "images": [
                {"url": img.get("url"), "alt": img.get("filename") or f"image-{i}"}
                for i, img in enumerate(images)
            ],
        }

    return {"kind": "unsupported", "type": ctype}


def content_label(content: dict) -> str:
    return content.get("title") or content.get("name") or content.get("type") or ""

# ── Player state ──────────────────────────────────────────

@dataclass
class PlayerState:
    modules: list[dict]
    module_index: int = 0
    content_index: int = 0
    video_start: int = 0

    @property
    def active_module(self) -> Optional[dict]:
        if 0 <= self.module_index < len(self.modules):
            return self.modules[self.module_index]
        return None

    @property
    def active_content(self) -> Optional[dict]:
        module = self.active_module
        items = module.get("content") if module else None
        if isinstance(items, list) and 0 <= self.content_index < len(items):
            return items[self.content_index]
        return None

    def select_module(self, index: int) -> None:
        self.module_index = index
        self.content_index = 0
        self.video_start = 0

    def select_content(self, index: int) -> None:
        self.content_index = index
        self.video_start = 0

    def seek(self, seconds: Any) -> None:
        self.video_start = max(0, _safe_int(seconds))

    def module_index_for(self, module_id: Optional[str]) -> int:
        for i, module in enumerate(self.modules):
            if module_id and str(module.get("_id")) == str(module_id):
                return i
        return 0

    def render(self) -> dict[str, Any]:
        module = self.active_module
        return {
            "moduleIndex": self.module_index,
            "contentIndex": self.content_index,
            "module": {
                "_id": module.get("_id"),
                "title": module.get("title"),
                "description": module.get("description") or "No description",
            } if module else None,
            "modules": [
                {"_id": m.get("_id"), "title": m.get("title"), "description": m.get("description")}
                for m in self.modules
            ],
            "contents": [
                {"type": c.get("type"), "label": content_label(c)}
                for c in ((module or {}).get("content") or [])
            ],
            "view": describe_content(self.active_content, self.video_start),
        }
