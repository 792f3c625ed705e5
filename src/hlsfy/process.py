import asyncio
import logging
import shlex
from typing import List

from hlsfy.errors import ToolError

logger = logging.getLogger(__name__)


async def run_tool(tool: str, command: List[str]) -> str:
    """Run an external program to completion and return its stderr.

    Raises ToolError on a non-zero exit code. A cancelled caller kills the
    program instead of leaving it running.
    """
    logger.debug(f"Running {shlex.join(command)}")
    process = await asyncio.create_subprocess_exec(
        *command,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        _, stderr = await process.communicate()
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    output = stderr.decode("utf-8", errors="ignore")
    if process.returncode != 0:
        raise ToolError(tool, process.returncode, output)
    return output
