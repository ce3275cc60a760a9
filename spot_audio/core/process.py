"""
Async subprocess helpers for the external audio tools.

ffmpeg, ffprobe and fpcalc are run with asyncio subprocesses so a slow
tool never blocks the event loop. Every run has a timeout; output can be
capped. Any failure raises ExternalToolError.
"""

import asyncio
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Sequence

from spot_audio.core.exceptions import ExternalToolError


# Bytes read from a tool's stdout per iteration
READ_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class ProcessOutput:
    stdout: bytes
    stderr: bytes


async def run_tool(
    args: Sequence[str],
    timeout: float,
    max_output_bytes: int | None = None
) -> ProcessOutput:
    """
    Run an external tool to completion.
    
    The child is killed if it times out, writes more than the ceiling, or
    the calling task is cancelled.
    
    Args:
        args: Program and arguments.
        timeout: Seconds before the process is killed.
        max_output_bytes: Optional ceiling on stdout size, enforced while
                          reading.
    
    Returns:
        Captured stdout and stderr.
    
    Raises:
        ExternalToolError: Binary missing, timeout, non-zero exit, or
                           stdout over the ceiling.
    """
    tool = args[0]
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError) as e:
        raise ExternalToolError(f"{tool} is not available: {e}", tool=tool) from e
    
    try:
        stdout, stderr = await asyncio.wait_for(
            _communicate(process, tool, max_output_bytes), timeout=timeout
        )
    except asyncio.TimeoutError as e:
        raise ExternalToolError(f"{tool} timed out after {timeout}s", tool=tool) from e
    finally:
        if process.returncode is None:
            await _kill(process)
    
    if process.returncode != 0:
        raise ExternalToolError(
            f"{tool} exited with status {process.returncode}",
            tool=tool,
            details={"stderr": stderr.decode("utf-8", errors="replace")[-2000:]},
        )
    
    return ProcessOutput(stdout=stdout, stderr=stderr)


async def _communicate(
    process: asyncio.subprocess.Process,
    tool: str,
    max_output_bytes: int | None
) -> tuple[bytes, bytes]:
    stderr_task = asyncio.ensure_future(process.stderr.read())
    try:
        stdout = await _read_capped(process.stdout, tool, max_output_bytes)
        stderr = await stderr_task
    finally:
        stderr_task.cancel()
    await process.wait()
    return stdout, stderr


async def _read_capped(
    stream: asyncio.StreamReader,
    tool: str,
    max_output_bytes: int | None
) -> bytes:
    chunks = []
    total = 0
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            return b"".join(chunks)
        total += len(chunk)
        if max_output_bytes is not None and total > max_output_bytes:
            raise ExternalToolError(f"{tool} output exceeded {max_output_bytes} bytes", tool=tool)
        chunks.append(chunk)


async def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


@contextmanager
def temporary_file(data: bytes, suffix: str) -> Iterator[Path]:
    """Write data to a temporary file and remove it on exit."""
    with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as handle:
        handle.write(data)
        path = Path(handle.name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)
