"""Skill registry: the in-memory view of the remote catalog.

The registry reconciles its entries against the catalog, drives the version
cache to fetch missing versions and evict stale ones, and answers list,
search and load queries.

Each skill id moves through::

    UNKNOWN -> LISTED -> MATERIALIZING -> READY
                  ^            |
                  +-- failure -+

A READY skill goes back to MATERIALIZING when the catalog reports a new
latest version.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from vikingskill.cache import CachedVersion, VersionCache, check_path_segment
from vikingskill.catalog.client import CatalogClient
from vikingskill.catalog.models import SkillDescriptor
from vikingskill.config import VikingConfig
from vikingskill.errors import FilesystemError, NotFoundError

logger = logging.getLogger(__name__)


# =============================================================================
# Data Models
# =============================================================================


class EntryState(Enum):
    """Lifecycle state of a skill id."""

    UNKNOWN = "unknown"
    LISTED = "listed"
    MATERIALIZING = "materializing"
    READY = "ready"


@dataclass(frozen=True)
class RegistryEntry:
    """A known skill, derived from its catalog descriptor."""

    id: str
    name: str
    description: str
    source: str
    latest_version: str
    update_time: float

    @classmethod
    def from_descriptor(cls, descriptor: SkillDescriptor) -> RegistryEntry:
        return cls(
            id=descriptor.skill_id,
            name=descriptor.display_title,
            description=descriptor.display_title,
            source=descriptor.source,
            latest_version=descriptor.latest_version,
            update_time=descriptor.update_time,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "source": self.source,
            "latest_version": self.latest_version,
            "update_time": self.update_time,
        }


@dataclass
class LoadResult:
    """Outcome of loading a skill's primary document."""

    skill_id: str
    found: bool
    content: Optional[str] = None
    version: Optional[str] = None
    error: str = ""

    @classmethod
    def not_found(cls, skill_id: str, error: str, version: Optional[str] = None) -> LoadResult:
        return cls(skill_id=skill_id, found=False, version=version, error=error)

    def to_dict(self) -> dict[str, Any]:
        if not self.found:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "skill": {"name": self.skill_id, "version": self.version, "content": self.content},
        }


@dataclass
class SyncReport:
    """Summary of one reconciliation pass."""

    catalog_ok: bool = True
    catalog_error: str = ""
    skill_count: int = 0
    downloaded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    evicted: dict[str, list[str]] = field(default_factory=dict)
    pruned: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "catalog_ok": self.catalog_ok,
            "catalog_error": self.catalog_error,
            "skill_count": self.skill_count,
            "downloaded": self.downloaded,
            "failed": self.failed,
            "evicted": self.evicted,
            "pruned": self.pruned,
            "skipped": self.skipped,
        }


# =============================================================================
# Registry
# =============================================================================


class SkillRegistry:
    """Owns registry entries and the content cache for one cache root.

    Entries are rebuilt off to the side on every successful catalog fetch and
    swapped in as a whole, so readers always see a complete snapshot. Only
    one reconciliation runs at a time. Within a pass, skills are processed in
    parallel but each id is handled by a single task (download, then evict).
    """

    def __init__(
        self,
        config: VikingConfig,
        catalog: Optional[CatalogClient] = None,
        cache: Optional[VersionCache] = None,
    ):
        self.config = config
        self._owns_catalog = catalog is None
        self._owns_cache = cache is None
        self.catalog = catalog if catalog is not None else CatalogClient(
            config.api_url,
            config.ak,
            config.sk,
            region=config.region,
            service=config.service,
            timeout=config.timeout,
        )
        self.cache = cache if cache is not None else VersionCache(config.cache_path, timeout=config.timeout)

        self._entries: dict[str, RegistryEntry] = {}
        self._states: dict[str, EntryState] = {}
        self._content: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()
        self._reload_lock = threading.Lock()
        self._id_locks: dict[str, threading.Lock] = {}
        self.last_sync: Optional[SyncReport] = None

    def __enter__(self) -> SkillRegistry:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Release HTTP clients this registry created."""
        if self._owns_catalog:
            self.catalog.close()
        if self._owns_cache:
            self.cache.close()

    def _id_lock(self, skill_id: str) -> threading.Lock:
        with self._lock:
            lock = self._id_locks.get(skill_id)
            if lock is None:
                lock = self._id_locks[skill_id] = threading.Lock()
            return lock

    def _set_state(self, skill_id: str, state: EntryState) -> None:
        with self._lock:
            if skill_id in self._entries:
                self._states[skill_id] = state

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self) -> int:
        """Scan the cache and run the first reconciliation.

        Returns:
            Number of registry entries

        Raises:
            FilesystemError: If the cache root cannot be created
        """
        self.cache.ensure_root()
        self.cache.scan_disk()
        return self.reload()

    def reload(self) -> int:
        """Reconcile against the catalog.

        A failed catalog fetch keeps the previous entries; a successful empty
        fetch clears them.

        Returns:
            Number of registry entries after the pass
        """
        with self._reload_lock:
            report = self._reconcile()
            self.last_sync = report
            return report.skill_count

    def _reconcile(self) -> SyncReport:
        report = SyncReport()
        logger.info("Loading skills from catalog: %s", self.catalog.api_url)

        result = self.catalog.fetch_skills()
        if not result.ok:
            logger.error("Catalog fetch failed, keeping previous skills: %s", result.error)
            report.catalog_ok = False
            report.catalog_error = str(result.error)
            report.skill_count = self.count
            return report

        entries: dict[str, RegistryEntry] = {}
        for descriptor in result.value or []:
            try:
                check_path_segment(descriptor.skill_id, "skill id")
                check_path_segment(descriptor.latest_version, "version")
            except FilesystemError as e:
                logger.warning("Skipping catalog entry: %s", e)
                report.skipped.append(descriptor.skill_id)
                continue
            entries[descriptor.skill_id] = RegistryEntry.from_descriptor(descriptor)

        with self._lock:
            previous = self._entries
            self._entries = entries
            self._states = {
                skill_id: (
                    EntryState.READY
                    if self.cache.has(skill_id, entry.latest_version)
                    else EntryState.LISTED
                )
                for skill_id, entry in entries.items()
            }
            # Drop documents of versions that are no longer current
            self._content = {
                key: text for key, text in self._content.items()
                if key[0] in entries and entries[key[0]].latest_version == key[1]
            }
        report.skill_count = len(entries)

        if entries:
            workers = max(1, min(self.config.max_workers, len(entries)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="skill-sync") as pool:
                outcomes = list(pool.map(self._sync_skill, entries.values()))
            for entry, (downloaded, ok, evicted) in zip(entries.values(), outcomes):
                if downloaded:
                    report.downloaded.append(entry.id)
                if not ok:
                    report.failed.append(entry.id)
                if evicted:
                    report.evicted[entry.id] = evicted

        if self.config.prune_orphans:
            report.pruned = self._prune_orphans(previous, entries)

        logger.info(
            "Skills loaded: count=%d downloaded=%d failed=%d",
            report.skill_count, len(report.downloaded), len(report.failed),
        )
        return report

    def _sync_skill(self, entry: RegistryEntry) -> tuple[bool, bool, list[str]]:
        """Materialize the latest version of one skill, then evict the rest.

        Returns:
            Tuple of (downloaded, available, evicted_versions)
        """
        with self._id_lock(entry.id):
            downloaded = False
            if self.cache.has(entry.id, entry.latest_version):
                logger.debug("Skill already cached: skill_id=%s version=%s", entry.id, entry.latest_version)
                available = True
            else:
                available = self._materialize(entry) is not None
                downloaded = available
            evicted = self.cache.evict_other_versions(entry.id, entry.latest_version)
        return downloaded, available, evicted

    def _materialize(self, entry: RegistryEntry) -> Optional[CachedVersion]:
        """Fetch the bundle URL and download it. Caller holds the id lock."""
        self._set_state(entry.id, EntryState.MATERIALIZING)

        detail = self.catalog.get_skill_detail(entry.id, self.config.retrieve_level)
        if detail is None or not detail.file_info.download_url:
            logger.warning(
                "No download URL available: skill_id=%s version=%s",
                entry.id, entry.latest_version,
            )
            self._set_state(entry.id, EntryState.LISTED)
            return None

        cached = self.cache.download(entry.id, entry.latest_version, detail.file_info.download_url)
        self._set_state(entry.id, EntryState.READY if cached else EntryState.LISTED)
        return cached

    def _prune_orphans(
        self,
        previous: dict[str, RegistryEntry],
        current: dict[str, RegistryEntry],
    ) -> list[str]:
        """Remove cache directories of skills that left the catalog."""
        known = set(previous) | {cached.skill_id for cached in self.cache.all()}
        pruned = []
        for skill_id in sorted(known - set(current)):
            with self._id_lock(skill_id):
                if self.cache.remove_skill(skill_id):
                    pruned.append(skill_id)
        return pruned

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_all(self) -> list[RegistryEntry]:
        """Snapshot of all entries, in catalog order."""
        with self._lock:
            return list(self._entries.values())

    def search(self, query: str) -> list[RegistryEntry]:
        """Case-insensitive substring match on name and id."""
        query_lower = query.lower()
        return [
            entry for entry in self.list_all()
            if query_lower in entry.name.lower() or query_lower in entry.id.lower()
        ]

    def get(self, skill_id: str) -> Optional[RegistryEntry]:
        with self._lock:
            return self._entries.get(skill_id)

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._entries)

    def state(self, skill_id: str) -> EntryState:
        with self._lock:
            return self._states.get(skill_id, EntryState.UNKNOWN)

    def cached_path(self, skill_id: str, version: str) -> Optional[Path]:
        return self.cache.cached_path(skill_id, version)

    # -------------------------------------------------------------------------
    # Content
    # -------------------------------------------------------------------------

    def load_content(self, skill_id: str) -> LoadResult:
        """Load the primary document of a skill's current version.

        Downloads the version if it is not materialized yet and mirrors it to
        the version-less path before reading. Documents are cached per
        (skill id, version).
        """
        entry = self.get(skill_id)
        if entry is None:
            logger.warning("Skill not found: skill_id=%s", skill_id)
            return LoadResult.not_found(skill_id, f'Skill "{skill_id}" not found')

        key = (entry.id, entry.latest_version)
        with self._lock:
            content = self._content.get(key)
        if content is not None:
            return LoadResult(skill_id=skill_id, found=True, content=content, version=entry.latest_version)

        logger.info("Loading skill content: skill_id=%s version=%s", entry.id, entry.latest_version)

        with self._id_lock(entry.id):
            cached = self.cache.get(entry.id, entry.latest_version)
            if cached is None:
                cached = self._materialize(entry)
                if cached is not None:
                    self.cache.evict_other_versions(entry.id, entry.latest_version)
            if cached is None:
                return LoadResult.not_found(
                    skill_id,
                    f'Skill "{skill_id}" is not available yet',
                    version=entry.latest_version,
                )

            try:
                self.cache.mirror(cached)
            except FilesystemError as e:
                logger.warning("Failed to mirror skill: skill_id=%s version=%s error=%s", entry.id, cached.version, e)

            try:
                content = self.cache.read_primary_document(cached)
            except (NotFoundError, FilesystemError) as e:
                logger.error(
                    "Failed to load skill content: skill_id=%s version=%s error=%s",
                    entry.id, cached.version, e,
                )
                return LoadResult.not_found(skill_id, str(e), version=cached.version)

        with self._lock:
            for stale in [k for k in self._content if k[0] == entry.id and k != key]:
                del self._content[stale]
            self._content[key] = content

        return LoadResult(skill_id=skill_id, found=True, content=content, version=entry.latest_version)
