"""
Block list manager

Authoritative set of blocked identities. The set is the only state that must
survive a restart: it is written as a JSON array of identity strings, with
block metadata kept in a sidecar file next to it.
"""

import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ..core.models import BlockEntry
from ..utils.storage import SecurityStore

logger = logging.getLogger(__name__)


def metadata_path_for(blocked_path: Path) -> Path:
    """``blocked-ips.json`` -> ``blocked-ips-meta.json``"""
    return blocked_path.with_name(f"{blocked_path.stem}-meta{blocked_path.suffix}")


class BlockListManager:
    """
    Thread-safe blocked identity store

    ``on_block`` is called (outside the lock) with the new BlockEntry after
    each successful block, so the caller can log a security event.
    """

    def __init__(self, blocked_path: str, store: Optional[SecurityStore] = None,
                 clock: Callable[[], float] = time.time,
                 on_block: Optional[Callable[[BlockEntry], None]] = None):
        self.blocked_path = Path(blocked_path)
        self.metadata_path = metadata_path_for(self.blocked_path)
        self.store = store or SecurityStore()
        self.clock = clock
        self.on_block = on_block

        self._blocked: Dict[str, Optional[BlockEntry]] = {}
        self._lock = threading.RLock()
        # Serializes snapshot + write; is_blocked never waits on file I/O
        self._save_lock = threading.Lock()

    def is_blocked(self, identity: str) -> bool:
        with self._lock:
            return identity in self._blocked

    def block_ip(self, identity: str, reason: str = "Manual block") -> Optional[BlockEntry]:
        """
        Block an identity and persist the set

        Returns:
            The new BlockEntry, or None if the identity was already blocked
        """
        if not identity:
            return None

        with self._lock:
            if identity in self._blocked:
                return None
            entry = BlockEntry(identity=identity, reason=reason,
                               timestamp=self.clock(), id=str(uuid.uuid4()))
            self._blocked[identity] = entry

        logger.warning(f"Blocked {identity}: {reason}")
        self.save()

        if self.on_block is not None:
            self.on_block(entry)
        return entry

    def unblock_ip(self, identity: str) -> bool:
        """Remove an identity from the block list; False if it was not blocked"""
        with self._lock:
            if identity not in self._blocked:
                return False
            del self._blocked[identity]

        logger.info(f"Unblocked {identity}")
        self.save()
        return True

    def get_blocked(self) -> List[str]:
        with self._lock:
            return sorted(self._blocked)

    def get_entries(self) -> List[BlockEntry]:
        """Metadata for blocked identities that have it"""
        with self._lock:
            return [entry for entry in self._blocked.values() if entry is not None]

    def get_entry(self, identity: str) -> Optional[BlockEntry]:
        with self._lock:
            return self._blocked.get(identity)

    def __len__(self) -> int:
        with self._lock:
            return len(self._blocked)

    # ========================================================================
    # PERSISTENCE
    # ========================================================================

    def save(self) -> bool:
        """Write the identity array and its metadata sidecar"""
        with self._save_lock:
            with self._lock:
                identities = sorted(self._blocked)
                metadata = {identity: entry.to_dict()
                            for identity, entry in self._blocked.items() if entry is not None}

            saved = self.store.write_json(self.blocked_path, identities)
            saved = self.store.write_json(self.metadata_path, metadata) and saved
        return saved

    def load(self) -> int:
        """
        Load the persisted block list, replacing the in-memory set

        Returns:
            Number of blocked identities loaded
        """
        identities = self.store.read_json(self.blocked_path, default=[])
        if not isinstance(identities, list):
            logger.warning(f"Ignoring malformed block list in {self.blocked_path.name}")
            identities = []

        raw_metadata = self.store.read_json(self.metadata_path, default={})
        if not isinstance(raw_metadata, dict):
            raw_metadata = {}

        blocked = {}
        for identity in identities:
            if not isinstance(identity, str) or not identity:
                continue
            entry = None
            if identity in raw_metadata:
                try:
                    entry = BlockEntry.from_dict(raw_metadata[identity])
                except (KeyError, TypeError, ValueError):
                    logger.debug(f"Discarding malformed block metadata for {identity}")
            blocked[identity] = entry

        with self._lock:
            self._blocked = blocked

        logger.info(f"Loaded {len(blocked)} blocked identities")
        return len(blocked)
