import pytest

from config import Settings
from main import app
from routers import rate_limit
from services.workspace import WorkspaceManager


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        OPENAI_API_KEY="sk-test",
        WORKSPACE_ROOT=str(tmp_path / "workspaces"),
        INFERENCE_MIN_INTERVAL_SECONDS=0,
        DOWNLOAD_COOKIES_FILE="",
        TRANSCRIPT_WINDOW_SECONDS=None,
    )


@pytest.fixture
def workspace_manager(tmp_path):
    return WorkspaceManager(str(tmp_path / "workspaces"))
