import logging
import shlex
from typing import List, Optional

from hlsfy.process import run_tool

logger = logging.getLogger(__name__)


class PackagerRunner:
    """Runs shaka-packager once over every track descriptor of a bundle."""

    def __init__(self, packager_path: str):
        self.packager_path = packager_path

    def build_command(
        self,
        descriptors: List[str],
        master_playlist: str,
        default_language: Optional[str] = None,
    ) -> List[str]:
        cmd = [self.packager_path, *descriptors]
        if default_language:
            cmd.extend(["--default_language", default_language])
        cmd.extend(["--hls_master_playlist_output", master_playlist])
        return cmd

    async def package(
        self,
        descriptors: List[str],
        master_playlist: str,
        default_language: Optional[str] = None,
    ) -> str:
        cmd = self.build_command(descriptors, master_playlist, default_language)
        logger.info(f"Creating HLS bundle with args: {shlex.join(cmd[1:])}")
        await run_tool("packager", cmd)
        return master_playlist
