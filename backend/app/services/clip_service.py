import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import aiofiles
import aiofiles.os

from backend.app.config import Settings, settings
from backend.app.exceptions import (
    CredentialError,
    OutputMissingError,
    ProcessExecutionError,
    ProcessSpawnError,
    ProcessTimeoutError,
)
from backend.app.models.schemas import ClipRequest

logger = logging.getLogger(__name__)

# https mp4+m4a, https webm+webm, any-protocol mp4, any-protocol webm, then whatever is best
FORMAT_SELECTOR = "/".join([
    "bestvideo[protocol=https][ext=mp4]+bestaudio[protocol=https][ext=m4a]",
    "bestvideo[protocol=https][ext=webm]+bestaudio[protocol=https][ext=webm]",
    "bestvideo[ext=mp4]+bestaudio[ext=m4a]",
    "bestvideo[ext=webm]+bestaudio[ext=webm]",
    "best",
])

PART_SUFFIX = ".part"
READ_CHUNK_SIZE = 64 * 1024

# checked in order against stderr of a failed run; first match wins
FAILURE_SIGNATURES = [
    ("Sign in to confirm you're not a bot", CredentialError),
    ("cookies", CredentialError),
]

_last_stamp = 0


@dataclass
class ProcessResult:
    stdout: str
    stderr: str
    returncode: int


def _next_stamp() -> int:
    """Unix millis, bumped by one if the clock has not moved since the last call."""
    global _last_stamp
    stamp = time.time_ns() // 1_000_000
    if stamp <= _last_stamp:
        stamp = _last_stamp + 1
    _last_stamp = stamp
    return stamp


def generate_output_path(uploads_dir: str) -> Path:
    return Path(uploads_dir) / f"clip-{_next_stamp()}.mp4"


def build_section(start_time, end_time) -> str:
    return f"*{start_time}-{end_time}"


def build_ytdlp_args(url: str, section: str, output_path: Path, conf: Settings) -> List[str]:
    return [
        url,
        "-f", FORMAT_SELECTOR,
        "--download-sections", section,
        "-o", str(output_path),
        "--no-check-certificates",  # accepts insecure TLS on purpose
        "--no-warnings",
        "--add-header", f"referer:{conf.referer}",
        "--add-header", f"user-agent:{conf.user_agent}",
        "--merge-output-format", "mp4",
        "--verbose",
        "--no-playlist",
        "--extractor-retries", str(conf.extractor_retries),
        "--ignore-errors",
        "--geo-bypass",
    ]


async def attach_cookies(args: List[str], cookies_path: str, min_size: int = 10) -> List[str]:
    """Return a copy of ``args`` with ``--cookies`` appended when a readable jar exists.

    A missing or unreadable jar is not an error: yt-dlp simply runs anonymously.
    """
    if not await aiofiles.os.path.exists(cookies_path):
        logger.warning("Cookies file not found at %s. Proceeding without cookies.", cookies_path)
        return list(args)

    logger.info("Using cookies from: %s", cookies_path)
    try:
        async with aiofiles.open(cookies_path, "r", encoding="utf-8") as f:
            content = await f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Error reading cookies file: %s", e)
        return list(args)

    logger.info("Cookies file loaded successfully. Size: %d bytes", len(content))
    if len(content) < min_size:
        logger.warning("Cookies file seems too small and may be invalid")
    return [*args, "--cookies", cookies_path]


def classify_failure(result: ProcessResult) -> ProcessExecutionError:
    for phrase, error_cls in FAILURE_SIGNATURES:
        if phrase in result.stderr:
            return error_cls.from_result(result.returncode, result.stderr)
    return ProcessExecutionError.from_result(result.returncode, result.stderr)


async def verify_output(output_path: Path, result: ProcessResult) -> None:
    try:
        size = (await aiofiles.os.stat(output_path)).st_size
    except FileNotFoundError:
        size = 0
    if size == 0:
        logger.error("yt-dlp exited code 0 but output file missing or empty: %s", output_path)
        raise OutputMissingError(
            f"yt-dlp indicated success, but no output file was found. Stderr: {result.stderr}",
            stderr=result.stderr,
        )


async def cleanup_clip(output_path: Path) -> None:
    """Remove the clip and anything yt-dlp left next to it (.part, per-format intermediates)."""
    output_path = Path(output_path)
    leftovers = {output_path, output_path.with_name(output_path.name + PART_SUFFIX)}
    # per-format intermediates such as clip-<stamp>.f137.mp4 share the stem
    prefix = f"{output_path.stem}."
    try:
        names = await aiofiles.os.listdir(output_path.parent)
    except OSError as e:
        logger.error("Cleanup error listing %s: %s", output_path.parent, e)
        names = []
    leftovers.update(output_path.parent / name for name in names if name.startswith(prefix))

    for path in sorted(leftovers):
        try:
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)
        except OSError as e:
            logger.error("Cleanup error for %s: %s", path, e)
    logger.info("Temporary file cleanup finished.")


class ClipService:
    """Downloads a time slice of a video with yt-dlp into the uploads directory."""

    def __init__(self, conf: Optional[Settings] = None):
        self.settings = conf or settings

    def new_output_path(self) -> Path:
        return generate_output_path(self.settings.uploads_dir)

    async def clip(self, request: ClipRequest, output_path: Path) -> Path:
        logger.info("Attempting to download and clip video from %s", request.url)
        logger.info("Output path: %s", output_path)

        section = build_section(request.startTime, request.endTime)
        args = build_ytdlp_args(request.url, section, output_path, self.settings)
        # the cookie jar is optional, yt-dlp runs anonymously without it
        args = await attach_cookies(args, self.settings.cookies_file, self.settings.min_cookies_size)

        # suspends until yt-dlp exits, other requests keep being served meanwhile
        result = await self.run_ytdlp(args)
        if result.returncode != 0:
            logger.error("yt-dlp process exited with code %s. Stderr: %s", result.returncode, result.stderr)
            raise classify_failure(result)

        # exit code 0 alone is not enough, yt-dlp can succeed without writing anything
        await verify_output(output_path, result)
        logger.info("yt-dlp download and clip successful: %s", output_path)
        return output_path

    async def run_ytdlp(self, args: List[str]) -> ProcessResult:
        command = self.settings.ytdlp_command
        try:
            proc = await asyncio.create_subprocess_exec(
                command, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("Failed to start yt-dlp process: %s", e)
            raise ProcessSpawnError(f"Failed to start yt-dlp: {e}") from e

        try:
            return await asyncio.wait_for(self._communicate(proc), timeout=self.settings.process_timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise ProcessTimeoutError(
                f"yt-dlp did not finish within {self.settings.process_timeout} seconds"
            )
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

    async def _communicate(self, proc: asyncio.subprocess.Process) -> ProcessResult:
        # drain both pipes together so a chatty stream never blocks the child
        stdout, stderr = await asyncio.gather(
            self._drain(proc.stdout, "stdout"),
            self._drain(proc.stderr, "stderr"),
        )
        returncode = await proc.wait()
        return ProcessResult(stdout=stdout, stderr=stderr, returncode=returncode)

    @staticmethod
    async def _drain(stream: asyncio.StreamReader, name: str) -> str:
        buffer = bytearray()
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            logger.debug("yt-dlp %s: %s", name, chunk.decode("utf-8", errors="replace").rstrip())
            buffer.extend(chunk)
        return buffer.decode("utf-8", errors="replace")

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
