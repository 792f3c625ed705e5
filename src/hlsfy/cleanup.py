import logging
import os
import shutil

logger = logging.getLogger(__name__)


def clean_temp(temp_dir: str) -> int:
    """Remove everything inside the shared temp root, keeping the root itself."""
    if not os.path.isdir(temp_dir):
        os.makedirs(temp_dir, exist_ok=True)
        return 0

    entries = os.listdir(temp_dir)
    for name in entries:
        path = os.path.join(temp_dir, name)
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path, ignore_errors=True)
        else:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
        logger.info(f"{name} deleted")

    logger.info(f"{len(entries)} temp entries deleted")
    return len(entries)
