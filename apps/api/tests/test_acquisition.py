import os
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from yt_dlp.utils import DownloadCancelled, DownloadError

from multimodal.errors import AcquisitionError, AcquisitionFailure
from multimodal.types import VideoSource
from multimodal.video import (
    Acquirer,
    classify_download_error,
    download_video,
    fetch_remote_duration,
    get_video_duration_seconds,
    has_active_cookies,
    validate_source_url,
)

COOKIES = (
    "# Netscape HTTP Cookie File\n"
    "#HttpOnly_.tiktok.com\tTRUE\t/\tTRUE\t1999999999\tsessionid\tabc123\n"
)


def _fake_ydl(download_side_effect=None, write_suffix=".mp4", info=None):
    """Patchable stand-in for yt_dlp.YoutubeDL that writes a file on download."""
    created = []

    def factory(opts):
        created.append(opts)
        instance = MagicMock()
        instance.__enter__.return_value = instance

        def download(urls):
            if download_side_effect is not None:
                raise download_side_effect
            target = Path(opts["outtmpl"]).with_suffix(write_suffix)
            target.write_bytes(b"fake-video")
            return 0

        def extract_info(url, download=False):
            if download_side_effect is not None:
                raise download_side_effect
            return info if info is not None else {"duration": 42.0}

        def exit_(*exc_info):
            # yt-dlp saves its cookie jar back to cookiefile on close
            if opts.get("cookiefile"):
                Path(opts["cookiefile"]).write_text("# Netscape HTTP Cookie File\n# rewritten on exit\n")
            return False

        instance.download.side_effect = download
        instance.extract_info.side_effect = extract_info
        instance.__exit__.side_effect = exit_
        return instance

    return factory, created


@pytest.mark.parametrize(
    "message,expected",
    [
        ("ERROR: [generic] Unable to download webpage: <urlopen error [Errno -2] Name or service not known>",
         AcquisitionFailure.NETWORK_UNREACHABLE),
        ("ERROR: Temporary failure in name resolution", AcquisitionFailure.NETWORK_UNREACHABLE),
        ("ERROR: Read timed out. (read timeout=30)", AcquisitionFailure.TIMEOUT),
        ("ERROR: [TikTok] 7123: This video is private", AcquisitionFailure.CONTENT_UNAVAILABLE),
        ("ERROR: [Instagram] abc: Login required to access this content", AcquisitionFailure.CONTENT_UNAVAILABLE),
        ("ERROR: Unable to download webpage: HTTP Error 404: Not Found", AcquisitionFailure.CONTENT_UNAVAILABLE),
        ("ERROR: Unsupported URL: https://example.com/page", AcquisitionFailure.CONTENT_UNAVAILABLE),
        ("ERROR: Postprocessing: ffprobe not found", AcquisitionFailure.DOWNLOAD_FAILED),
        ("", AcquisitionFailure.DOWNLOAD_FAILED),
    ],
)
def test_classify_download_error(message, expected):
    assert classify_download_error(message) == expected


@pytest.mark.parametrize("url", ["", "not a url", "ftp://example.com/video.mp4", "www.tiktok.com/@a/video/1"])
def test_validate_source_url_rejects_invalid(url):
    with pytest.raises(AcquisitionError) as exc_info:
        validate_source_url(url)

    assert exc_info.value.kind == AcquisitionFailure.INVALID_URL
    assert exc_info.value.category == "invalid_url"


def test_validate_source_url_strips_whitespace():
    assert validate_source_url("  https://www.tiktok.com/@a/video/1 ") == "https://www.tiktok.com/@a/video/1"


def test_has_active_cookies(tmp_path):
    header_only = tmp_path / "empty.txt"
    header_only.write_text("# Netscape HTTP Cookie File\n# This is a generated file!\n\n")
    real = tmp_path / "cookies.txt"
    real.write_text(
        "# Netscape HTTP Cookie File\n"
        "#HttpOnly_.tiktok.com\tTRUE\t/\tTRUE\t1999999999\tsessionid\tabc123\n"
    )

    assert has_active_cookies(str(real)) is True
    assert has_active_cookies(str(header_only)) is False
    assert has_active_cookies(str(tmp_path / "missing.txt")) is False
    assert has_active_cookies(None) is False


def test_download_video_returns_absolute_path(tmp_path):
    factory, created = _fake_ydl()
    output = tmp_path / "video.mp4"

    with patch("multimodal.video.yt_dlp.YoutubeDL", side_effect=factory):
        path = download_video("https://example.com/v/1", str(output), socket_timeout=15)

    assert path == os.path.abspath(output)
    assert created[0]["socket_timeout"] == 15
    assert created[0]["noplaylist"] is True
    assert "cookiefile" not in created[0]


def test_download_video_finds_renamed_output(tmp_path):
    factory, _ = _fake_ydl(write_suffix=".webm")
    output = tmp_path / "video.mp4"

    with patch("multimodal.video.yt_dlp.YoutubeDL", side_effect=factory):
        path = download_video("https://example.com/v/1", str(output))

    assert path.endswith("video.webm")


def test_download_video_classifies_network_failure(tmp_path):
    factory, _ = _fake_ydl(DownloadError("ERROR: [Errno -2] Name or service not known"))

    with patch("multimodal.video.yt_dlp.YoutubeDL", side_effect=factory):
        with pytest.raises(AcquisitionError) as exc_info:
            download_video("https://nonexistent.invalid/v/1", str(tmp_path / "video.mp4"))

    assert exc_info.value.kind == AcquisitionFailure.NETWORK_UNREACHABLE
    assert exc_info.value.stage == "download"


def test_download_video_cancelled_is_timeout(tmp_path):
    factory, _ = _fake_ydl(DownloadCancelled("Download timed out"))

    with patch("multimodal.video.yt_dlp.YoutubeDL", side_effect=factory):
        with pytest.raises(AcquisitionError) as exc_info:
            download_video("https://example.com/v/1", str(tmp_path / "video.mp4"), timeout_seconds=1)

    assert exc_info.value.kind == AcquisitionFailure.TIMEOUT


def test_download_video_without_output_file(tmp_path):
    instance = MagicMock()
    instance.__enter__.return_value = instance

    with patch("multimodal.video.yt_dlp.YoutubeDL", return_value=instance):
        with pytest.raises(AcquisitionError) as exc_info:
            download_video("https://example.com/v/1", str(tmp_path / "video.mp4"))

    assert exc_info.value.kind == AcquisitionFailure.DOWNLOAD_FAILED


def test_strategies_skip_inactive_cookies(test_settings, tmp_path):
    acquirer = Acquirer(test_settings)
    empty = tmp_path / "cookies.txt"
    empty.write_text("# Netscape HTTP Cookie File\n")

    names = [s.name for s in acquirer.strategies(str(empty))]

    assert names == ["no_cookies", "embed_only"]
    assert [s.name for s in acquirer.strategies()] == ["no_cookies", "embed_only"]


def test_strategies_lead_with_active_cookies(test_settings, tmp_path):
    acquirer = Acquirer(test_settings)
    cookies = tmp_path / "cookies.txt"
    cookies.write_text(COOKIES)

    strategies = acquirer.strategies(str(cookies))

    assert [s.name for s in strategies] == ["cookies_file", "no_cookies", "embed_only"]
    assert strategies[0].cookies_file == str(cookies)
    assert strategies[2].check_certificate is False


@pytest.mark.asyncio
async def test_fetch_falls_back_to_next_strategy(test_settings, workspace_manager):
    acquirer = Acquirer(test_settings)
    calls = []

    def fake_download(url, output_path, **kwargs):
        calls.append(kwargs["format_spec"])
        if len(calls) == 1:
            raise AcquisitionError("private", AcquisitionFailure.CONTENT_UNAVAILABLE)
        Path(output_path).write_bytes(b"fake-video")
        return output_path

    async with workspace_manager.session("fallback") as workspace:
        with patch("multimodal.video.download_video", side_effect=fake_download):
            path = await acquirer.fetch(VideoSource("https://example.com/v/1"), workspace)

        assert Path(path).exists()
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_fetch_does_not_retry_network_failures(test_settings, workspace_manager):
    acquirer = Acquirer(test_settings)

    with patch(
        "multimodal.video.download_video",
        side_effect=AcquisitionError("dns", AcquisitionFailure.NETWORK_UNREACHABLE),
    ) as mock_download:
        async with workspace_manager.session("network") as workspace:
            with pytest.raises(AcquisitionError) as exc_info:
                await acquirer.fetch(VideoSource("https://example.com/v/1"), workspace)

    assert exc_info.value.kind == AcquisitionFailure.NETWORK_UNREACHABLE
    assert mock_download.call_count == 1


@pytest.mark.asyncio
async def test_fetch_rejects_invalid_url_before_download(test_settings, workspace_manager):
    acquirer = Acquirer(test_settings)

    with patch("multimodal.video.download_video") as mock_download:
        async with workspace_manager.session("invalid") as workspace:
            with pytest.raises(AcquisitionError) as exc_info:
                await acquirer.fetch(VideoSource("javascript:alert(1)"), workspace)

    assert exc_info.value.kind == AcquisitionFailure.INVALID_URL
    mock_download.assert_not_called()


@pytest.mark.asyncio
async def test_fetch_leaves_configured_cookies_file_untouched(test_settings, workspace_manager, tmp_path):
    configured = tmp_path / "shared_cookies.txt"
    configured.write_text(COOKIES)
    before = configured.read_bytes()
    acquirer = Acquirer(test_settings.model_copy(update={"DOWNLOAD_COOKIES_FILE": str(configured)}))
    factory, created = _fake_ydl()

    async with workspace_manager.session("cookies") as workspace:
        with patch("multimodal.video.yt_dlp.YoutubeDL", side_effect=factory):
            await acquirer.fetch(VideoSource("https://example.com/v/1"), workspace)

        staged = created[0]["cookiefile"]
        assert staged == workspace.file("cookies.txt")
        assert "rewritten on exit" in Path(staged).read_text()

    assert configured.read_bytes() == before


@pytest.mark.asyncio
async def test_fetch_stages_request_cookies_in_workspace(test_settings, workspace_manager):
    acquirer = Acquirer(test_settings)
    factory, created = _fake_ydl()

    async with workspace_manager.session("request-cookies") as workspace:
        with patch("multimodal.video.yt_dlp.YoutubeDL", side_effect=factory):
            await acquirer.fetch(VideoSource("https://example.com/v/1", cookies=COOKIES), workspace)

        assert os.path.dirname(created[0]["cookiefile"]) == workspace.path


def test_stage_cookies_prefers_request_content(test_settings, workspace_manager, tmp_path):
    configured = tmp_path / "shared_cookies.txt"
    configured.write_text(COOKIES.replace("abc123", "from-config"))
    acquirer = Acquirer(test_settings.model_copy(update={"DOWNLOAD_COOKIES_FILE": str(configured)}))
    workspace = workspace_manager.acquire("stage")

    staged = acquirer.stage_cookies(VideoSource("https://example.com/v/1", cookies=COOKIES), workspace)

    assert "abc123" in Path(staged).read_text()
    workspace_manager.release(workspace)


def test_stage_cookies_without_usable_cookies(test_settings, workspace_manager, tmp_path):
    workspace = workspace_manager.acquire("stage-none")
    missing = Acquirer(test_settings.model_copy(update={"DOWNLOAD_COOKIES_FILE": str(tmp_path / "missing.txt")}))

    assert Acquirer(test_settings).stage_cookies(VideoSource("https://example.com/v/1"), workspace) is None
    assert missing.stage_cookies(VideoSource("https://example.com/v/1"), workspace) is None
    header_only = VideoSource("https://example.com/v/1", cookies="# Netscape HTTP Cookie File\n")
    assert Acquirer(test_settings).stage_cookies(header_only, workspace) is None
    workspace_manager.release(workspace)


def test_video_source_repr_hides_cookies():
    assert "abc123" not in repr(VideoSource("https://example.com/v/1", cookies=COOKIES))


@pytest.mark.asyncio
async def test_fetch_copies_uploaded_file(test_settings, workspace_manager, tmp_path):
    upload = tmp_path / "clip.MOV"
    upload.write_bytes(b"uploaded-video")
    acquirer = Acquirer(test_settings)

    with patch("multimodal.video.download_video") as mock_download:
        async with workspace_manager.session("upload") as workspace:
            path = await acquirer.fetch(VideoSource(upload_path=str(upload)), workspace)

            assert path == workspace.file("video.mov")
            assert Path(path).read_bytes() == b"uploaded-video"

    mock_download.assert_not_called()
    assert upload.exists()


@pytest.mark.asyncio
async def test_fetch_missing_upload_is_content_unavailable(test_settings, workspace_manager, tmp_path):
    acquirer = Acquirer(test_settings)

    async with workspace_manager.session("upload-missing") as workspace:
        with pytest.raises(AcquisitionError) as exc_info:
            await acquirer.fetch(VideoSource(upload_path=str(tmp_path / "gone.mp4")), workspace)

    assert exc_info.value.kind == AcquisitionFailure.CONTENT_UNAVAILABLE


def test_get_video_duration_seconds_reads_format_then_streams():
    with patch("multimodal.video.ffmpeg.probe", return_value={"format": {"duration": "12.5"}}):
        assert get_video_duration_seconds("video.mp4") == 12.5

    metadata = {
        "format": {},
        "streams": [{"codec_type": "audio", "duration": "9.0"}, {"codec_type": "video", "duration": "8.0"}],
    }
    with patch("multimodal.video.ffmpeg.probe", return_value=metadata):
        assert get_video_duration_seconds("video.mp4") == 8.0


def test_get_video_duration_seconds_unreadable_file():
    with patch("multimodal.video.ffmpeg.probe", side_effect=FileNotFoundError("ffprobe")):
        assert get_video_duration_seconds("video.mp4") == 0.0


def test_fetch_remote_duration_skips_download(tmp_path):
    factory, created = _fake_ydl(info={"duration": 61})

    with patch("multimodal.video.yt_dlp.YoutubeDL", side_effect=factory):
        duration = fetch_remote_duration("https://example.com/v/1", socket_timeout=10)

    assert duration == 61.0
    assert created[0]["skip_download"] is True
    assert created[0]["socket_timeout"] == 10


def test_fetch_remote_duration_missing_field():
    factory, _ = _fake_ydl(info={"title": "live"})

    with patch("multimodal.video.yt_dlp.YoutubeDL", side_effect=factory):
        assert fetch_remote_duration("https://example.com/v/1") is None


@pytest.mark.asyncio
async def test_estimate_duration_falls_through_strategies(test_settings, workspace_manager):
    acquirer = Acquirer(test_settings)
    calls = []

    def fake_lookup(url, **kwargs):
        calls.append(kwargs["format_spec"])
        if len(calls) == 1:
            raise AcquisitionError("private", AcquisitionFailure.CONTENT_UNAVAILABLE)
        return 33.0

    async with workspace_manager.session("estimate") as workspace:
        with patch("multimodal.video.fetch_remote_duration", side_effect=fake_lookup):
            estimate = await acquirer.estimate_duration(VideoSource("https://example.com/v/1"), workspace)

    assert estimate.seconds == 33.0
    assert estimate.is_estimate is False
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_estimate_duration_falls_back_when_every_strategy_fails(test_settings, workspace_manager):
    acquirer = Acquirer(test_settings)
    error = AcquisitionError("private", AcquisitionFailure.CONTENT_UNAVAILABLE)

    async with workspace_manager.session("estimate-fallback") as workspace:
        with patch("multimodal.video.fetch_remote_duration", side_effect=error) as mock_lookup:
            estimate = await acquirer.estimate_duration(VideoSource("https://example.com/v/1"), workspace)

    assert estimate.seconds == test_settings.DURATION_FALLBACK_SECONDS
    assert estimate.is_estimate is True
    assert estimate.note
    assert mock_lookup.call_count == 2


@pytest.mark.asyncio
async def test_estimate_duration_rejects_invalid_url(test_settings, workspace_manager):
    acquirer = Acquirer(test_settings)

    async with workspace_manager.session("estimate-invalid") as workspace:
        with pytest.raises(AcquisitionError) as exc_info:
            await acquirer.estimate_duration(VideoSource("not a url"), workspace)

    assert exc_info.value.kind == AcquisitionFailure.INVALID_URL


@pytest.mark.asyncio
async def test_estimate_duration_for_upload(test_settings, workspace_manager, tmp_path):
    upload = tmp_path / "clip.mp4"
    upload.write_bytes(b"uploaded-video")
    acquirer = Acquirer(test_settings)

    async with workspace_manager.session("estimate-upload") as workspace:
        with patch("multimodal.video.ffmpeg.probe", return_value={"format": {"duration": "20.0"}}):
            estimate = await acquirer.estimate_duration(VideoSource(upload_path=str(upload)), workspace)

    assert estimate.seconds == 20.0
    assert estimate.is_estimate is False
