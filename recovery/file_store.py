from __future__ import annotations

import logging
import os
import uuid
from pathlib import Path

recovery_logger = logging.getLogger("Recovery")


def atomic_write(directory: str, filename: str, data: bytes) -> str:
    """Persist *data* as ``directory/filename`` in an *atomic* fashion.

    The bytes go to a uniquely named temp file in the same directory, are
    flushed and fsynced, and only then renamed over the target. Readers see
    either the previous file or the complete new one. Returns the final path.
    """
    file_path = os.path.join(directory, filename)
    tmp_path = os.path.join(directory, f".tmp_{uuid.uuid4().hex}_{filename}")
    try:
        with open(tmp_path, "wb") as fp:
            fp.write(data)
            fp.flush()
            os.fsync(fp.fileno())
        os.replace(tmp_path, file_path)
    except OSError:
        if Path(tmp_path).exists():
            os.remove(tmp_path)
        raise
    recovery_logger.debug(f"Wrote {len(data)} bytes to {file_path}")
    return file_path


def remove_if_exists(path: str) -> bool:
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False


def is_temp_file(name: str) -> bool:
    return name.startswith(".tmp_")
