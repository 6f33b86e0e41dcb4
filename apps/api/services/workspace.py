"""Per-request temporary workspaces."""

from __future__ import annotations

import logging
import os
import re
import shutil
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


@dataclass(frozen=True)
class Workspace:
    request_id: str
    path: str

    def file(self, name: str) -> str:
        return os.path.join(self.path, name)

    def subdir(self, name: str) -> str:
        target = os.path.join(self.path, name)
        os.makedirs(target, exist_ok=True)
        return target


class WorkspaceManager:
    """Creates one isolated directory per request and removes it afterwards."""

    def __init__(self, root: str):
        self.root = root

    def acquire(self, request_id: Optional[str] = None) -> Workspace:
        request_id = request_id or uuid.uuid4().hex
        safe_id = _UNSAFE_CHARS.sub("_", request_id)[:64] or "request"
        Path(self.root).mkdir(parents=True, exist_ok=True)
        path = os.path.join(self.root, f"vcb_{safe_id}_{uuid.uuid4().hex[:8]}")
        os.makedirs(path)  # raises if it already exists
        logger.info(f"Created workspace {path} for request {request_id}")
        return Workspace(request_id=request_id, path=path)

    def release(self, workspace: Workspace) -> None:
        """Delete the workspace. Safe to call twice; never raises."""
        if not os.path.exists(workspace.path):
            return
        try:
            shutil.rmtree(workspace.path)
            logger.info(f"Removed workspace {workspace.path}")
        except Exception as e:
            logger.error(f"Error cleaning up workspace {workspace.path}: {e}")

    @asynccontextmanager
    async def session(self, request_id: Optional[str] = None) -> AsyncIterator[Workspace]:
        workspace = self.acquire(request_id)
        try:
            yield workspace
        finally:
            self.release(workspace)
