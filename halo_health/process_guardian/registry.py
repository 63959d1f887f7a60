"""
Process Registry & Instance Guardian
====================================

Persists two small JSON files under the health directory:

- ``instance.json``: identity of the current host run plus a clean-exit
  marker. Written synchronously at startup (before anything else in the
  health system runs) and rewritten at shutdown.
- ``process-registry.json``: every managed child process, tagged with the
  instance that spawned it. Entries tagged with any other instance are
  orphans left behind by a previous run.

Failure semantics:
- A corrupted or unreadable registry is treated as empty (logged, never
  fatal). The cleaner's args-based scan is the safety net for lost state.
- A missing instance file means first run; an unreadable one, or one
  without ``cleanExit: true``, means the previous run crashed.

Usage:
    from halo_health.process_guardian.registry import (
        mark_instance_start, register_process, unregister_process,
    )

    instance_id = mark_instance_start()
    register_process(ProcessEntry(id=conv_id, pid=pid, type=ProcessType.AGENT_SESSION,
                                  instance_id=instance_id))
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from halo_health.config import HealthSettings, get_settings
from halo_health.core.exceptions import RegistryCorruptError
from halo_health.core.types import ProcessEntry, ProcessType

logger = logging.getLogger(__name__)

REGISTRY_VERSION = 1

RegistryKey = Tuple[str, ProcessType]


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    os.replace(tmp_path, path)


# =============================================================================
# Instance Guardian
# =============================================================================

class InstanceGuardian:
    """Tracks the identity of this host run and whether the last one exited cleanly."""

    def __init__(self, settings: Optional[HealthSettings] = None):
        self._settings = settings or get_settings()
        self._instance_id: Optional[str] = None
        self._started_at: float = 0.0
        self._last_exit_clean: Optional[bool] = None
        self._previous_instance_id: Optional[str] = None

    @property
    def instance_file(self) -> Path:
        return self._settings.instance_file

    @property
    def instance_id(self) -> Optional[str]:
        return self._instance_id

    @property
    def started_at(self) -> float:
        return self._started_at

    @property
    def previous_instance_id(self) -> Optional[str]:
        return self._previous_instance_id

    def _read_previous(self) -> Tuple[bool, Optional[str]]:
        """Return (last_exit_clean, previous_instance_id) from the marker file."""
        try:
            raw = self.instance_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return True, None
        except OSError as e:
            logger.warning(f"[Health][Instance] Could not read instance marker: {e}")
            return False, None

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("[Health][Instance] Instance marker is corrupted, assuming prior crash")
            return False, None
        if not isinstance(data, dict):
            return False, None
        return data.get("cleanExit") is True, data.get("instanceId")

    def mark_instance_start(self) -> str:
        """
        Generate and persist a fresh instance identifier.

        Synchronous by contract: everything else in the health system
        assumes this has already happened.
        """
        clean, previous_id = self._read_previous()
        self._last_exit_clean = clean
        self._previous_instance_id = previous_id

        self._instance_id = str(uuid.uuid4())
        self._started_at = time.time()

        try:
            _write_json(self.instance_file, {
                "instanceId": self._instance_id,
                "pid": os.getpid(),
                "startedAt": self._started_at,
                "cleanExit": False,
                "previousInstanceId": previous_id,
            })
        except OSError as e:
            logger.error(f"[Health][Instance] Failed to persist instance marker: {e}")

        if not clean:
            logger.warning(f"[Health][Instance] Previous run {previous_id or 'unknown'} did not exit cleanly")
        return self._instance_id

    def mark_clean_exit(self) -> None:
        """Record a clean shutdown; only the next start reads it."""
        if not self._instance_id:
            logger.warning("[Health][Instance] mark_clean_exit called before mark_instance_start")
            return
        try:
            _write_json(self.instance_file, {
                "instanceId": self._instance_id,
                "pid": os.getpid(),
                "startedAt": self._started_at,
                "cleanExit": True,
                "exitedAt": time.time(),
                "previousInstanceId": self._previous_instance_id,
            })
            logger.info("[Health][Instance] Clean exit recorded")
        except OSError as e:
            logger.error(f"[Health][Instance] Failed to record clean exit: {e}")

    def was_last_exit_clean(self) -> bool:
        """Whether the run before this one recorded a clean exit."""
        if self._last_exit_clean is None:
            # Not started yet: peek without side effects
            clean, _ = self._read_previous()
            return clean
        return self._last_exit_clean


# =============================================================================
# Process Registry
# =============================================================================

class ProcessRegistry:
    """Persisted record of managed child processes, keyed by (id, type)."""

    def __init__(
        self,
        settings: Optional[HealthSettings] = None,
        guardian: Optional[InstanceGuardian] = None,
    ):
        self._settings = settings or get_settings()
        self._guardian = guardian or InstanceGuardian(self._settings)
        self._entries: Dict[RegistryKey, ProcessEntry] = {}
        self._loaded = False

    @property
    def guardian(self) -> InstanceGuardian:
        return self._guardian

    @property
    def registry_file(self) -> Path:
        return self._settings.registry_file

    @property
    def current_instance_id(self) -> Optional[str]:
        return self._guardian.instance_id

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _parse(self, raw: str) -> Dict[RegistryKey, ProcessEntry]:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise RegistryCorruptError(f"invalid JSON: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
            raise RegistryCorruptError("missing entries list")

        entries: Dict[RegistryKey, ProcessEntry] = {}
        for item in data["entries"]:
            try:
                entry = ProcessEntry.from_dict(item)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[Health][Registry] Skipping malformed entry {item!r}: {e}")
                continue
            entries[entry.key] = entry
        return entries

    def load(self) -> None:
        """(Re)load entries from disk. Corruption yields an empty registry."""
        self._loaded = True
        try:
            raw = self.registry_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._entries = {}
            return
        except OSError as e:
            logger.error(f"[Health][Registry] Could not read registry: {e}")
            self._entries = {}
            return

        try:
            self._entries = self._parse(raw)
        except RegistryCorruptError as e:
            logger.error(f"[Health][Registry] Registry corrupted ({e}), starting empty")
            self._entries = {}

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def save(self) -> None:
        try:
            _write_json(self.registry_file, {
                "version": REGISTRY_VERSION,
                "updatedAt": time.time(),
                "entries": [entry.to_dict() for entry in self._entries.values()],
            })
        except OSError as e:
            logger.error(f"[Health][Registry] Failed to persist registry: {e}")

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def register_process(self, entry: ProcessEntry) -> None:
        """Insert or replace the entry for (entry.id, entry.type)."""
        self._ensure_loaded()
        if not entry.instance_id:
            entry.instance_id = self.current_instance_id or ""
        self._entries[entry.key] = entry
        self.save()
        logger.debug(f"[Health][Registry] Registered {entry.type.value} {entry.id} (PID: {entry.pid})")

    def unregister_process(self, process_id: str, process_type: ProcessType) -> bool:
        """Remove an entry. Returns False (and writes nothing) if it was absent."""
        self._ensure_loaded()
        removed = self._entries.pop((process_id, ProcessType(process_type)), None)
        if removed is None:
            return False
        self.save()
        logger.debug(f"[Health][Registry] Unregistered {removed.type.value} {process_id}")
        return True

    def clear_orphan_entries(self) -> int:
        """Drop every entry that belongs to another instance."""
        self._ensure_loaded()
        orphan_keys = [e.key for e in self.get_orphan_processes()]
        for key in orphan_keys:
            del self._entries[key]
        if orphan_keys:
            self.save()
            logger.info(f"[Health][Registry] Cleared {len(orphan_keys)} orphan entries")
        return len(orphan_keys)

    def clear_all(self) -> int:
        self._ensure_loaded()
        count = len(self._entries)
        self._entries.clear()
        self.save()
        return count

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_all_processes(self) -> List[ProcessEntry]:
        self._ensure_loaded()
        return list(self._entries.values())

    def get_current_processes(self) -> List[ProcessEntry]:
        current = self.current_instance_id
        if not current:
            return []
        return [e for e in self.get_all_processes() if e.instance_id == current]

    def get_orphan_processes(self) -> List[ProcessEntry]:
        current = self.current_instance_id
        if not current:
            return []
        return [e for e in self.get_all_processes() if e.instance_id != current]

    def get_registry_stats(self) -> Dict[str, Any]:
        entries = self.get_all_processes()
        current = self.current_instance_id
        by_type: Dict[str, int] = {t.value: 0 for t in ProcessType}
        for entry in entries:
            by_type[entry.type.value] += 1
        current_count = sum(1 for e in entries if current and e.instance_id == current)
        return {
            "totalProcesses": len(entries),
            "currentProcesses": current_count,
            "orphanProcesses": len(entries) - current_count if current else 0,
            "byType": by_type,
        }


# =============================================================================
# Global Instance
# =============================================================================

_registry: Optional[ProcessRegistry] = None


def get_process_registry() -> ProcessRegistry:
    """Get or create the global process registry."""
    global _registry
    if _registry is None:
        _registry = ProcessRegistry()
    return _registry


def reset_process_registry(registry: Optional[ProcessRegistry] = None) -> None:
    """Replace (or drop) the global registry. Intended for tests and re-init."""
    global _registry
    _registry = registry


def mark_instance_start() -> str:
    return get_process_registry().guardian.mark_instance_start()


def mark_clean_exit() -> None:
    get_process_registry().guardian.mark_clean_exit()


def was_last_exit_clean() -> bool:
    return get_process_registry().guardian.was_last_exit_clean()


def get_current_instance_id() -> Optional[str]:
    return get_process_registry().current_instance_id


def register_process(entry: ProcessEntry) -> None:
    get_process_registry().register_process(entry)


def unregister_process(process_id: str, process_type: ProcessType) -> bool:
    return get_process_registry().unregister_process(process_id, process_type)


def get_current_processes() -> List[ProcessEntry]:
    return get_process_registry().get_current_processes()


def get_orphan_processes() -> List[ProcessEntry]:
    return get_process_registry().get_orphan_processes()


def clear_orphan_entries() -> int:
    return get_process_registry().clear_orphan_entries()


def get_registry_stats() -> Dict[str, Any]:
    return get_process_registry().get_registry_stats()
