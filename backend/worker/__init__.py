"""Processing worker contracts and the in-process implementation."""

from worker.files import LocalFileBrowser, find_files
from worker.local import DocumentProcessor, LocalWorker, write_summary_json
from worker.protocol import FileBrowser, ProcessingWorker

__all__ = [
    "DocumentProcessor",
    "FileBrowser",
    "LocalFileBrowser",
    "LocalWorker",
    "ProcessingWorker",
    "find_files",
    "write_summary_json",
]
