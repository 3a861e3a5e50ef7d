"""
Unit tests for course player content dispatch and player state.
"""

from __future__ import annotations

import pytest

from services.player import (
    PLAYBACK_SPEEDS,
    PlayerState,
    describe_content,
    format_timestamp,
    image_files,
    is_youtube_url,
    youtube_embed_url,
    youtube_video_id,
)


class TestYouTube:
    @pytest.mark.parametrize("url, video_id", [
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/watch?list=x&v=abc123&t=5", "abc123"),
        ("https://youtu.be/xyz789?t=10", "xyz789"),
    ])
    def test_video_id(self, url, video_id) -> None:
        assert is_youtube_url(url)
        assert youtube_video_id(url) == video_id

    def test_non_youtube_url(self) -> None:
        assert not is_youtube_url("https://cdn.example.com/lesson.mp4")
        assert youtube_video_id(None) is None

    def test_embed_url_clamps_start(self) -> None:
        assert youtube_embed_url("abc", -5) == (
            "https://www.youtube.com/embed/abc?start=0&rel=0&modestbranding=1"
        )
        assert "start=90&" in youtube_embed_url("abc", "90")


class TestDescribeContent:
    def test_no_content(self) -> None:
        assert describe_content(None) == {"kind": "empty", "message": "No content in this module."}

    def test_youtube_video_with_chapters(self) -> None:
        content = {
            "type": "video",
            "title": "Intro",
            "url": "https://youtu.be/abc",
            "chapters": [{"title": "Setup", "time": 3725}],
        }

        view = describe_content(content, start_seconds=42)

        assert view["kind"] == "youtube"
        assert view["video_id"] == "abc"
        assert "start=42" in view["embed_url"]
        assert view["chapters"] == [{"title": "Setup", "time": 3725, "label": "01:02:05"}]

    def test_unparsable_youtube_url(self) -> None:
        view = describe_content({"type": "video", "url": "https://www.youtube.com/channel/foo"})

        assert view["kind"] == "invalid"
        assert view["message"] == "Invalid YouTube URL"

    def test_html5_video(self) -> None:
        view = describe_content({"type": "video", "url": "/media/lesson.mp4"})

        assert view["kind"] == "html5_video"
        assert view["src"] == "/media/lesson.mp4"
        assert view["speeds"] == PLAYBACK_SPEEDS

    def test_pdf(self) -> None:
        assert describe_content({"type": "pdf", "url": "/a.pdf"}) == {"kind": "pdf", "url": "/a.pdf"}
        assert describe_content({"type": "pdf"})["message"] == "No PDF provided"

    def test_text_field_precedence(self) -> None:
        assert describe_content({"type": "text", "body": "b", "content": "c"})["text"] == "b"
        assert describe_content({"type": "text", "content": "c"})["text"] == "c"
        assert describe_content({"type": "text"})["message"] == "No text content"

    def test_images_filtered(self) -> None:
        content = {
            "type": "image",
            "files": [
                {"url": "/a.PNG", "filename": "a"},
                {"url": "/b", "fileType": "image/webp"},
                {"url": "/notes.pdf", "fileType": "application/pdf"},
            ],
        }

        view = describe_content(content)

        assert view["kind"] == "images"
        assert [img["url"] for img in view["images"]] == ["/a.PNG", "/b"]
        assert view["images"][1]["alt"] == "image-1"

    def test_single_image_from_own_url(self) -> None:
        view = describe_content({"type": "image", "url": "/diagram.svg", "title": "Diagram"})

        assert view["images"] == [{"url": "/diagram.svg", "alt": "Diagram"}]

    def test_no_images_left(self) -> None:
        view = describe_content({"type": "image", "url": "/file.zip"})

        assert view["images"] == []
        assert view["message"] == "No images"

    def test_unknown_type(self) -> None:
        assert describe_content({"type": "scorm"}) == {"kind": "unsupported", "type": "scorm"}

    def test_image_files_rejects_non_list(self) -> None:
        assert image_files(None) == []


class TestFormatTimestamp:
    @pytest.mark.parametrize("seconds, label", [
        (0, "00:00:00"),
        (59, "00:00:59"),
        (3661, "01:01:01"),
        ("bad", "00:00:00"),
    ])
    def test_labels(self, seconds, label) -> None:
        assert format_timestamp(seconds) == label


class TestPlayerState:
    MODULES = [
        {"_id": "m1", "title": "One", "content": [
            {"type": "text", "title": "Welcome", "text": "hi"},
            {"type": "pdf", "url": "/p.pdf"},
        ]},
        {"_id": "m2", "title": "Two", "content": []},
    ]

    def test_select_module_resets_content_and_start(self) -> None:
        state = PlayerState(self.MODULES)
        state.select_content(1)
        state.seek(30)

        state.select_module(1)

        assert (state.module_index, state.content_index, state.video_start) == (1, 0, 0)
        assert state.active_content is None

    def test_out_of_range_indexes_resolve_to_none(self) -> None:
        state = PlayerState(self.MODULES, module_index=7)

        assert state.active_module is None
        assert state.active_content is None
        assert state.render()["module"] is None
        assert state.render()["view"]["kind"] == "empty"

    def test_module_index_for(self) -> None:
        state = PlayerState(self.MODULES)

        assert state.module_index_for("m2") == 1
        assert state.module_index_for("missing") == 0
        assert state.module_index_for(None) == 0

    def test_render(self) -> None:
        state = PlayerState(self.MODULES)
        state.select_content(1)

        data = state.render()

        assert data["module"] == {"_id": "m1", "title": "One", "description": "No description"}
        assert data["contents"] == [
            {"type": "text", "label": "Welcome"},
            {"type": "pdf", "label": "pdf"},
        ]
        assert data["view"] == {"kind": "pdf", "url": "/p.pdf"}

    def test_empty_course(self) -> None:
        data = PlayerState([]).render()

        assert data["modules"] == []
        assert data["view"]["kind"] == "empty"
