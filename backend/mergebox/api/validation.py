"""Pre-flight checks for the external tools Mergebox drives."""

import logging
import shutil
import subprocess
import sys
from pathlib import Path

from fastapi import APIRouter
from pydantic import BaseModel

from mergebox.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


class ToolDetectionResult(BaseModel):
    """Detection result for a single tool."""

    found: bool
    path: str | None = None
    version: str | None = None
    error: str | None = None


class DetectToolsResponse(BaseModel):
    """Response for the detect-tools endpoint."""

    ffmpeg: ToolDetectionResult
    platform: str


def _get_ffmpeg_search_paths() -> list[str]:
    """Return platform-specific common FFmpeg installation paths."""
    if sys.platform == "win32":
        return [
            r"C:\tools\ffmpeg\bin\ffmpeg.exe",
            r"C:\ffmpeg\bin\ffmpeg.exe",
            r"C:\Program Files\ffmpeg\bin\ffmpeg.exe",
        ]
    return [
        "/usr/bin/ffmpeg",
        "/usr/local/bin/ffmpeg",
        "/opt/homebrew/bin/ffmpeg",
    ]


def _validate_ffmpeg_binary(path_str: str) -> ToolDetectionResult:
    """Run ``ffmpeg -version`` and keep its first line as the version."""
    try:
        result = subprocess.run(
            [path_str, "-version"],
            capture_output=True,
            timeout=10,
            text=True,
        )
    except subprocess.TimeoutExpired:
        return ToolDetectionResult(found=False, path=path_str, error="Command timeout (10s)")
    except OSError as e:
        return ToolDetectionResult(found=False, path=path_str, error=f"Execution failed: {e}")

    if result.returncode != 0:
        return ToolDetectionResult(found=False, path=path_str, error="Non-zero exit code")
    version_line = result.stdout.split("\n")[0] if result.stdout else "Unknown"
    return ToolDetectionResult(found=True, path=path_str, version=version_line)


def detect_ffmpeg(configured: str | None = None) -> ToolDetectionResult:
    """Find a working ffmpeg.

    The configured binary (a path or a bare command name) is tried first,
    then PATH, then the usual install locations.
    """
    configured = configured or settings.ffmpeg_path
    candidates: list[str] = []

    if configured:
        resolved = shutil.which(configured) or (configured if Path(configured).is_file() else None)
        if resolved:
            candidates.append(resolved)
        else:
            logger.warning(f"Configured ffmpeg not found: {configured}")

    found = shutil.which("ffmpeg")
    if found:
        candidates.append(found)
    candidates.extend(p for p in _get_ffmpeg_search_paths() if Path(p).is_file())

    seen = set()
    for path_str in candidates:
        if path_str in seen:
            continue
        seen.add(path_str)
        result = _validate_ffmpeg_binary(path_str)
        if result.found:
            logger.info(f"Found FFmpeg at: {path_str}")
            return result

    return ToolDetectionResult(found=False, error="FFmpeg not found")


@router.get("/detect-tools", response_model=DetectToolsResponse)
async def detect_tools() -> DetectToolsResponse:
    """Auto-detect the FFmpeg installation."""
    return DetectToolsResponse(ffmpeg=detect_ffmpeg(), platform=sys.platform)
