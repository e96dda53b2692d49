"""
File persistence for Request Sentinel

All durable writes go through SecurityStore. Writes never raise: an I/O
failure is logged at warning level and reported as False so the caller can
carry on with its in-memory state and retry on the next scheduled save.
"""

import json
import logging
import os
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, List, Optional, Union

from ..core.exceptions import PersistenceError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class SecurityStore:
    """
    Thread-safe JSON / JSON-lines file writer
    """

    def __init__(self):
        # Serializes appends so concurrent lines never interleave
        self._write_lock = threading.Lock()

    @staticmethod
    def dated_path(directory: PathLike, prefix: str, timestamp: float, suffix: str) -> Path:
        """Build ``<directory>/<prefix>-YYYY-MM-DD<suffix>`` for a UTC day"""
        day = datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime('%Y-%m-%d')
        return Path(directory) / f"{prefix}-{day}{suffix}"

    def ensure_dirs(self, directories: Iterable[PathLike]) -> bool:
        """Create storage directories, logging (not raising) on failure"""
        ok = True
        for directory in directories:
            try:
                Path(directory).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.warning(f"Could not create directory {directory}: {e}")
                ok = False
        return ok

    def append_jsonl(self, path: PathLike, record: Any) -> bool:
        """
        Append one JSON object as a line

        Args:
            path: Target file
            record: JSON-serializable object

        Returns:
            True if the line was written
        """
        path = Path(path)
        try:
            line = json.dumps(record, default=str, ensure_ascii=False)
            with self._write_lock:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(path, 'a', encoding='utf-8') as f:
                    f.write(line + '\n')
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to append to {path.name}: {e}")
            return False

    def write_json(self, path: PathLike, data: Any, raise_on_error: bool = False) -> bool:
        """
        Atomically replace a JSON document

        The document is written to a temporary sibling first and then moved
        into place, so readers never see a half-written file.

        Raises:
            PersistenceError: On failure, only when raise_on_error is set
        """
        path = Path(path)
        temp_file = path.with_suffix(path.suffix + '.tmp')
        try:
            payload = json.dumps(data, indent=2, default=str, ensure_ascii=False)
            with self._write_lock:
                path.parent.mkdir(parents=True, exist_ok=True)
                with open(temp_file, 'w', encoding='utf-8') as f:
                    f.write(payload)
                os.replace(temp_file, path)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to write {path.name}: {e}")
            try:
                temp_file.unlink()
            except OSError:
                pass
            if raise_on_error:
                raise PersistenceError(f"Could not write {path.name}") from e
            return False

    def read_json(self, path: PathLike, default: Any = None) -> Any:
        """Read a JSON document, returning ``default`` if absent or unreadable"""
        path = Path(path)
        if not path.exists():
            return default
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read {path.name}: {e}")
            return default

    def read_jsonl(self, path: PathLike) -> List[Any]:
        """Read every parseable line of a JSON-lines file"""
        path = Path(path)
        records = []
        if not path.exists():
            return records
        try:
            with open(path, 'r', encoding='utf-8') as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        records.append(json.loads(line))
                    except ValueError:
                        logger.debug(f"Skipping malformed line in {path.name}")
        except OSError as e:
            logger.warning(f"Failed to read {path.name}: {e}")
        return records

    def cleanup_old_files(self, directories: Iterable[PathLike], retention_days: int,
                          now: Optional[float] = None,
                          exclude: Iterable[PathLike] = ()) -> int:
        """
        Delete regular files whose modification time is past retention

        Args:
            directories: Directories to scan (not recursive)
            retention_days: Age limit in days
            now: Reference time (defaults to now)
            exclude: Files that are never removed

        Returns:
            Number of files removed
        """
        cutoff = (now if now is not None else time.time()) - retention_days * 86400
        protected = {Path(p).resolve() for p in exclude}
        removed = 0
        for directory in directories:
            directory = Path(directory)
            if not directory.is_dir():
                continue
            for file_path in directory.iterdir():
                if file_path.resolve() in protected:
                    continue
                try:
                    if file_path.is_file() and file_path.stat().st_mtime < cutoff:
                        file_path.unlink()
                        removed += 1
                        logger.info(f"Cleaned up old log: {file_path.name}")
                except OSError as e:
                    logger.warning(f"Failed to remove {file_path.name}: {e}")
        return removed
