import json
import os
import platform
import sys
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from hlsfy.errors import PackagerNotFound

PACKAGER_BINARIES = {
    "linux": {"x64": "packager-linux-x64", "arm64": "packager-linux-arm64"},
    "darwin": {"x64": "packager-osx-x64", "arm64": "packager-osx-arm64"},
    "win32": {"x64": "packager-win-x64.exe"},
}

_MACHINE_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    concurrency: int = 3
    max_retry: int = 3
    ignore_check_process: bool = False
    initial_items: str = "[]"
    check_interval: float = 5.0

    database_url: str = "sqlite:///db/queue.sqlite"
    temp_dir: str = os.path.join(os.getcwd(), "tmp")

    download_concurrency: int = 5
    upload_concurrency: int = 50

    isolate_jobs: bool = True
    retry_jobs: bool = False

    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    packager_path: Optional[str] = None
    packager_dir: str = os.path.join(os.getcwd(), "shaka-packager-bin")

    sentry_dsn: Optional[str] = None
    environment: str = "development"
    log_level: str = "INFO"

    host: str = "0.0.0.0"
    port: int = 3000

    def initial_requests(self) -> List[Dict[str, Any]]:
        """Seed requests from INITIAL_ITEMS; a single object is treated as a one-item list."""
        items = json.loads(self.initial_items or "[]")
        if not isinstance(items, list):
            items = [items]
        return items

    def resolve_packager(self) -> str:
        if self.packager_path:
            return self.packager_path

        binaries = PACKAGER_BINARIES.get(sys.platform)
        if binaries is None:
            raise PackagerNotFound(f"Platform not supported: {sys.platform}")

        arch = _MACHINE_ALIASES.get(platform.machine().lower(), platform.machine().lower())
        if arch not in binaries:
            raise PackagerNotFound(f"Architecture not supported: {sys.platform}/{arch}")

        return os.path.join(self.packager_dir, binaries[arch])


@lru_cache
def get_settings() -> Settings:
    return Settings()
