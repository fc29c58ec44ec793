"""
Pytest fixtures for reel render tests.

No test needs ffmpeg or ffprobe: subprocesses are replaced with fakes and
every file lives under pytest's tmp_path.
"""

import asyncio
from pathlib import Path

import pytest

from reel_render.config import Settings
from reel_render.render.clip_graph import RenderConfig
from reel_render.services.job_registry import InMemoryJobRegistry
from reel_render.services.storage_service import WorkspaceStorage


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        storage_root=str(tmp_path / "storage"),
        progress_poll_interval_s=0.01,
        encoder_terminate_grace_s=0.1,
    )


@pytest.fixture
def render_config() -> RenderConfig:
    return RenderConfig()


@pytest.fixture
def registry() -> InMemoryJobRegistry:
    return InMemoryJobRegistry()


@pytest.fixture
def storage(settings: Settings) -> WorkspaceStorage:
    storage = WorkspaceStorage(settings)
    storage.ensure_dirs()
    return storage


class FakeProcess:
    """Stands in for asyncio.subprocess.Process.

    stdout/stderr are real StreamReaders fed up front. A hanging process
    never reaches EOF until it is terminated.
    """

    def __init__(
        self,
        stdout_lines: list[bytes] = (),
        stderr_lines: list[bytes] = (),
        returncode: int = 0,
        hang: bool = False,
    ):
        self.pid = 4242
        self.returncode: int | None = None
        self.terminated = False
        self.killed = False
        self._final_returncode = returncode
        self._exited = asyncio.Event()

        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        for line in stdout_lines:
            self.stdout.feed_data(line)
        for line in stderr_lines:
            self.stderr.feed_data(line)
        if not hang:
            self._finish(returncode)

    def _finish(self, returncode: int) -> None:
        self._final_returncode = returncode
        if not self.stdout.at_eof():
            self.stdout.feed_eof()
        if not self.stderr.at_eof():
            self.stderr.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        self.returncode = self._final_returncode
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self._finish(-15)

    def kill(self) -> None:
        self.killed = True
        self._finish(-9)


@pytest.fixture
def fake_process():
    return FakeProcess
