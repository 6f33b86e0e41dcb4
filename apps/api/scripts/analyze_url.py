import sys
import os
import asyncio

# Add parent dir to path to find config and packages
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import configure_logging  # noqa: E402
from config import settings  # noqa: E402
from multimodal.errors import PipelineError  # noqa: E402
from multimodal.types import VideoSource  # noqa: E402
from services.pipeline import build_pipeline  # noqa: E402


def _source(target: str, cookies_file=None) -> VideoSource:
    """A local file path is analyzed as an upload; anything else as a URL."""
    if os.path.isfile(target):
        return VideoSource(upload_path=os.path.abspath(target))
    cookies = None
    if cookies_file:
        with open(cookies_file, "r", encoding="utf-8", errors="replace") as handle:
            cookies = handle.read()
    return VideoSource(target, cookies=cookies)


async def analyze_url(target: str, cookies_file=None) -> int:
    print(f"📡 Analyzing: {target}")

    def on_progress(stage: str, percent: int) -> None:
        print(f"   [{percent:>3}%] {stage}")

    try:
        pipeline = build_pipeline(settings)
    except ValueError as e:
        print(f"❌ {e}")
        return 2

    try:
        report = await pipeline.run(_source(target, cookies_file), on_progress=on_progress)
    except PipelineError as e:
        print(f"❌ Failed at {e.stage} ({e.category}): {e}")
        return 1

    print("✅ Analysis completed")
    print(f"   Shots: {len(report.shots)}  Duration: {report.duration:.1f}s")
    print(report.model_dump_json(indent=2))
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("usage: python scripts/analyze_url.py <video-url|video-file> [cookies.txt]")
        sys.exit(2)
    configure_logging(settings.LOG_LEVEL)
    cookies = sys.argv[2] if len(sys.argv) > 2 else None
    sys.exit(asyncio.run(analyze_url(sys.argv[1], cookies)))
