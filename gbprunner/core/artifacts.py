# Copyright 2026 Firefly Software Solutions Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Screenshot and download files on local disk."""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from gbprunner.utils.logger import logger

FILE_TYPES = {
    ".pdf": "PDF Document",
    ".xlsx": "Excel Spreadsheet",
    ".xls": "Excel Spreadsheet (Legacy)",
    ".docx": "Word Document",
    ".doc": "Word Document (Legacy)",
    ".pptx": "PowerPoint Presentation",
    ".txt": "Text File",
    ".csv": "CSV File",
    ".zip": "ZIP Archive",
    ".rar": "RAR Archive",
    ".png": "PNG Image",
}

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*]')


def file_type_label(filename: str) -> str:
    return FILE_TYPES.get(Path(filename).suffix.lower(), "Unknown File")


def sanitize_filename(filename: str) -> str:
    return _UNSAFE_CHARS.sub("_", filename)


def download_filename(suggested: Optional[str], url: str, now_ms: Optional[int] = None) -> str:
    """
    Choose a file name for a download.

    The suggested name wins unless it is empty or the generic "download";
    then the last URL path segment is used when it has an extension, and
    finally a timestamped default based on hints in the URL.
    """
    stamp = now_ms if now_ms is not None else int(time.time() * 1000)
    filename = suggested or ""

    if not filename or filename == "download":
        last_segment = urlparse(url).path.rsplit("/", 1)[-1]
        lowered = url.lower()
        if "." in last_segment:
            filename = last_segment
        elif "pdf" in lowered:
            filename = f"document_{stamp}.pdf"
        elif ".xlsx" in lowered or "excel" in lowered:
            filename = f"spreadsheet_{stamp}.xlsx"
        elif ".docx" in lowered or "word" in lowered:
            filename = f"document_{stamp}.docx"
        else:
            filename = f"download_{stamp}.bin"

    return sanitize_filename(filename)


@dataclass
class ArtifactFile:
    filename: str
    path: Path
    size: int
    created: float
    modified: float

    def to_dict(self, url_prefix: str) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "url": f"{url_prefix}/{self.filename}",
            "size": self.size,
            "created": datetime.fromtimestamp(self.created, timezone.utc).isoformat(),
            "modified": datetime.fromtimestamp(self.modified, timezone.utc).isoformat(),
            "extension": self.path.suffix,
            "type": file_type_label(self.filename),
        }


class ArtifactStore:
    """
    Owns the screenshot and download directories.

    Screenshots are served under ``/screenshots/<name>`` and downloads
    under ``/downloads/<name>``.
    """

    SCREENSHOTS_URL = "/screenshots"
    DOWNLOADS_URL = "/downloads"

    def __init__(self, screenshots_dir: str, downloads_dir: str) -> None:
        self.screenshots_dir = Path(screenshots_dir)
        self.downloads_dir = Path(downloads_dir)

    def ensure_dirs(self) -> None:
        self.screenshots_dir.mkdir(parents=True, exist_ok=True)
        self.downloads_dir.mkdir(parents=True, exist_ok=True)

    def save_screenshot(self, data: bytes, error: bool = False) -> Dict[str, str]:
        """Write PNG bytes and return ``{"filename", "path", "url"}``."""
        self.ensure_dirs()
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        prefix = "error-screenshot" if error else "screenshot"
        filename = f"{prefix}-{stamp}.png"
        path = self.screenshots_dir / filename
        path.write_bytes(data)
        logger.info(f"Screenshot saved: {path}")
        return {
            "filename": filename,
            "path": str(path),
            "url": f"{self.SCREENSHOTS_URL}/{filename}",
        }

    def download_path(self, filename: str) -> Path:
        self.ensure_dirs()
        return self.downloads_dir / sanitize_filename(filename)

    def _list(self, directory: Path) -> List[ArtifactFile]:
        if not directory.exists():
            return []
        files = []
        for path in sorted(directory.iterdir()):
            if not path.is_file():
                continue
            stat = path.stat()
            files.append(ArtifactFile(
                filename=path.name,
                path=path,
                size=stat.st_size,
                created=stat.st_ctime,
                modified=stat.st_mtime,
            ))
        return files

    def list_screenshots(self) -> List[Dict[str, Any]]:
        return [f.to_dict(self.SCREENSHOTS_URL) for f in self._list(self.screenshots_dir)]

    def list_downloads(self) -> List[Dict[str, Any]]:
        return [f.to_dict(self.DOWNLOADS_URL) for f in self._list(self.downloads_dir)]

    def _cleanup(self, directory: Path, max_age_hours: float) -> List[str]:
        cutoff = time.time() - max_age_hours * 3600
        removed = []
        for artifact in self._list(directory):
            if artifact.modified < cutoff:
                artifact.path.unlink(missing_ok=True)
                removed.append(artifact.filename)
        if removed:
            logger.info(f"Removed {len(removed)} file(s) older than {max_age_hours}h from {directory}")
        return removed

    def cleanup_screenshots(self, max_age_hours: float) -> List[str]:
        return self._cleanup(self.screenshots_dir, max_age_hours)

    def cleanup_downloads(self, max_age_hours: float) -> List[str]:
        return self._cleanup(self.downloads_dir, max_age_hours)
