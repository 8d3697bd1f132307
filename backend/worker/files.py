"""Local filesystem browser for input and result files."""

import asyncio
import os
import subprocess
import sys
from functools import partial
from pathlib import Path

import structlog

from models.schemas import FileInfo

logger = structlog.get_logger(__name__)


def find_files(directory: Path, extension: str) -> list[Path]:
    """Recursively collect files with ``extension`` (case-insensitive), sorted."""
    suffix = extension.lower()
    return sorted(
        p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() == suffix
    )


def _file_info(path: Path) -> FileInfo:
    stat = path.stat()
    return FileInfo(
        name=path.name,
        path=str(path),
        size=stat.st_size,
        modified_timestamp=int(stat.st_mtime),
    )


def _platform_open(path: Path) -> bool:
    """Open ``path`` with the desktop's default application.

    ``open`` and ``xdg-open`` hand the path to the desktop and exit, so the
    child is waited for here and never left behind.
    """
    if sys.platform.startswith("win"):
        os.startfile(str(path))  # type: ignore[attr-defined]
        return True

    opener = "open" if sys.platform == "darwin" else "xdg-open"
    result = subprocess.run(
        [opener, str(path)],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        check=False,
    )
    if result.returncode != 0:
        logger.warning("platform_open_failed", path=str(path), returncode=result.returncode)
    return result.returncode == 0


class LocalFileBrowser:
    """FileBrowser backed by the local filesystem.

    Blocking filesystem calls run on the default executor.
    """

    async def _run(self, fn, *args):
        return await asyncio.get_running_loop().run_in_executor(None, partial(fn, *args))

    async def list_files(self, directory: str, extension: str = ".pdf") -> list[str]:
        """List matching files below ``directory``.

        Raises:
            FileNotFoundError: If the directory does not exist.
        """
        root = Path(directory)
        if not root.is_dir():
            raise FileNotFoundError(f"Directory not found: {directory}")
        files = await self._run(find_files, root, extension)
        return [str(p) for p in files]

    async def get_file_info(self, path: str) -> FileInfo:
        target = Path(path)
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        return await self._run(_file_info, target)

    async def open_file(self, path: str) -> bool:
        target = Path(path)
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {path}")
        opened = await self._run(_platform_open, target)
        logger.info("file_opened", path=path, opened=opened)
        return opened

    async def open_folder(self, path: str) -> bool:
        target = Path(path)
        if not target.is_dir():
            raise FileNotFoundError(f"Directory not found: {path}")
        opened = await self._run(_platform_open, target)
        logger.info("folder_opened", path=path, opened=opened)
        return opened
