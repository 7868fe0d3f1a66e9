"""On-disk version cache for skill bundles.

Layout::

    <cache_root>/<skill_id>/<version>/      unpacked bundle, one per version
    <cache_root>/<skill_id>/SKILL.md ...    mirror of the current version
    <cache_root>/<skill_id>/.mirror.json    names written by the mirror

Only directories not named in ``.mirror.json`` count as cached versions.
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
import time
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import httpx

from vikingskill.errors import FilesystemError, NotFoundError

logger = logging.getLogger(__name__)

PRIMARY_DOCUMENT = "SKILL.md"
MIRROR_RECORD = ".mirror.json"
DEFAULT_DOWNLOAD_TIMEOUT = 60.0


@dataclass
class CachedVersion:
    """A materialized skill version on disk."""

    skill_id: str
    version: str
    path: Path
    materialized_at: float

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "skill_id": self.skill_id,
            "version": self.version,
            "path": str(self.path),
            "materialized_at": self.materialized_at,
        }


# =============================================================================
# Archive Helpers
# =============================================================================


def check_path_segment(name: str, kind: str) -> str:
    """Ensure a skill id or version can be used as a single directory name."""
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise FilesystemError(f"Unsafe {kind} for cache path: {name!r}")
    return name


def unpack_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Unpack a zip bundle into a directory.

    Args:
        archive_path: Path to the zip file
        dest_dir: Destination directory

    Returns:
        The destination directory

    Raises:
        FilesystemError: If the archive is missing, corrupt or unsafe
    """
    if not archive_path.exists():
        raise FilesystemError(f"Archive not found: {archive_path}")

    dest_dir.mkdir(parents=True, exist_ok=True)

    try:
        with zipfile.ZipFile(archive_path) as archive:
            # No absolute paths or parent traversal
            for member in archive.namelist():
                parts = Path(member).parts
                if member.startswith(("/", "\\")) or ".." in parts:
                    raise FilesystemError(f"Unsafe path in archive: {member}")
            archive.extractall(dest_dir)
    except zipfile.BadZipFile as e:
        raise FilesystemError(f"Corrupt archive {archive_path}: {e}") from e
    except (
        RuntimeError,
        NotImplementedError,
        ValueError,
        EOFError,
        zipfile.LargeZipFile,
        zlib.error,
    ) as e:
        # Encrypted members, unsupported compression, truncated streams
        raise FilesystemError(f"Cannot unpack archive {archive_path}: {e}") from e

    return dest_dir


def _remove_path(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


# =============================================================================
# Version Cache
# =============================================================================


class VersionCache:
    """Owns ``<cache_root>/<skill_id>/<version>/`` and its in-memory index."""

    def __init__(
        self,
        cache_root: Union[str, Path],
        http_client: Optional[httpx.Client] = None,
        timeout: float = DEFAULT_DOWNLOAD_TIMEOUT,
    ):
        self.cache_root = Path(cache_root).expanduser()
        self._owns_client = http_client is None
        self._http = http_client if http_client is not None else httpx.Client(timeout=timeout, follow_redirects=True)
        self._index: dict[tuple[str, str], CachedVersion] = {}
        self._lock = threading.Lock()

    def close(self) -> None:
        """Close the download client if this instance created it."""
        if self._owns_client:
            self._http.close()

    def ensure_root(self) -> Path:
        """Create the cache root if needed.

        Raises:
            FilesystemError: If the directory cannot be created
        """
        try:
            self.cache_root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"Cannot create cache directory {self.cache_root}: {e}") from e
        return self.cache_root

    def skill_dir(self, skill_id: str) -> Path:
        return self.cache_root / check_path_segment(skill_id, "skill id")

    def version_dir(self, skill_id: str, version: str) -> Path:
        return self.skill_dir(skill_id) / check_path_segment(version, "version")

    # -------------------------------------------------------------------------
    # Index lookups
    # -------------------------------------------------------------------------

    def get(self, skill_id: str, version: str) -> Optional[CachedVersion]:
        """Get a cached version, dropping it if its directory has vanished."""
        key = (skill_id, version)
        with self._lock:
            cached = self._index.get(key)
            if cached is not None and not cached.path.is_dir():
                logger.warning(
                    "Cached version disappeared from disk: skill_id=%s version=%s path=%s",
                    skill_id, version, cached.path,
                )
                del self._index[key]
                return None
            return cached

    def has(self, skill_id: str, version: str) -> bool:
        return self.get(skill_id, version) is not None

    def cached_path(self, skill_id: str, version: str) -> Optional[Path]:
        cached = self.get(skill_id, version)
        return cached.path if cached else None

    def versions_for(self, skill_id: str) -> list[str]:
        """List indexed versions of a skill."""
        with self._lock:
            return sorted(v for (sid, v) in self._index if sid == skill_id)

    def all(self) -> list[CachedVersion]:
        with self._lock:
            return list(self._index.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)

    # -------------------------------------------------------------------------
    # Mirror bookkeeping
    # -------------------------------------------------------------------------

    def _mirrored_names(self, skill_dir: Path) -> set[str]:
        record = skill_dir / MIRROR_RECORD
        if not record.is_file():
            return set()
        try:
            data = json.loads(record.read_text())
            return {str(name) for name in data.get("entries", [])}
        except (OSError, ValueError, AttributeError) as e:
            logger.warning("Unreadable mirror record %s: %s", record, e)
            return set()

    def _write_mirror_record(self, skill_dir: Path, version: str, entries: set[str]) -> None:
        record = {"version": version, "entries": sorted(entries), "updated_at": time.time()}
        (skill_dir / MIRROR_RECORD).write_text(json.dumps(record, indent=2))

    # -------------------------------------------------------------------------
    # Scan
    # -------------------------------------------------------------------------

    def scan_disk(self) -> dict[tuple[str, str], CachedVersion]:
        """Rebuild the index from what is materialized on disk.

        Walks two levels (skill id, then version). Unreadable or non-directory
        entries are skipped with a warning.

        Returns:
            Mapping of (skill_id, version) to CachedVersion
        """
        found: dict[tuple[str, str], CachedVersion] = {}

        try:
            skill_dirs = sorted(self.cache_root.iterdir())
        except OSError as e:
            logger.error("Failed to scan cache directory %s: %s", self.cache_root, e)
            skill_dirs = []

        for skill_dir in skill_dirs:
            if not skill_dir.is_dir():
                logger.warning("Skipping non-directory in cache root: %s", skill_dir)
                continue

            skill_id = skill_dir.name
            mirrored = self._mirrored_names(skill_dir) | {MIRROR_RECORD}
            try:
                entries = sorted(skill_dir.iterdir())
            except OSError as e:
                logger.warning("Failed to scan cached skill: skill_id=%s error=%s", skill_id, e)
                continue

            for entry in entries:
                if entry.name in mirrored:
                    continue
                try:
                    if not entry.is_dir():
                        logger.warning(
                            "Skipping non-directory in skill cache: skill_id=%s entry=%s",
                            skill_id, entry.name,
                        )
                        continue
                    mtime = entry.stat().st_mtime
                except OSError as e:
                    logger.warning(
                        "Failed to stat cached version: skill_id=%s version=%s error=%s",
                        skill_id, entry.name, e,
                    )
                    continue

                found[(skill_id, entry.name)] = CachedVersion(
                    skill_id=skill_id,
                    version=entry.name,
                    path=entry,
                    materialized_at=mtime,
                )
                logger.debug("Found cached version: skill_id=%s version=%s", skill_id, entry.name)

        with self._lock:
            self._index = dict(found)

        logger.info("Cached versions loaded: %d", len(found))
        return found

    # -------------------------------------------------------------------------
    # Materialize
    # -------------------------------------------------------------------------

    def _materialize(self, version_dir: Path, version: str, download_url: str) -> None:
        archive_path = version_dir / f"{version}.zip"

        try:
            version_dir.mkdir(parents=True, exist_ok=True)
            logger.debug("Downloading bundle: url=%s path=%s", download_url, archive_path)

            with self._http.stream("GET", download_url) as response:
                response.raise_for_status()
                with open(archive_path, "wb") as f:
                    for chunk in response.iter_bytes():
                        f.write(chunk)

            unpack_archive(archive_path, version_dir)
            archive_path.unlink()
        except OSError as e:
            raise FilesystemError(str(e)) from e

    def download(self, skill_id: str, version: str, download_url: str) -> Optional[CachedVersion]:
        """Download and unpack a skill version into the cache.

        The version only enters the index on full success. Failures are
        logged, any partial directory is removed and None is returned.
        """
        logger.info("Materializing skill: skill_id=%s version=%s", skill_id, version)

        try:
            version_dir = self.version_dir(skill_id, version)
        except FilesystemError as e:
            logger.error("Refusing to materialize skill: %s", e)
            return None

        try:
            self._materialize(version_dir, version, download_url)
        except (httpx.HTTPError, httpx.InvalidURL, FilesystemError) as e:
            logger.error(
                "Failed to materialize skill: skill_id=%s version=%s error=%s",
                skill_id, version, e,
            )
            shutil.rmtree(version_dir, ignore_errors=True)
            return None

        cached = CachedVersion(
            skill_id=skill_id,
            version=version,
            path=version_dir,
            materialized_at=time.time(),
        )
        with self._lock:
            self._index[(skill_id, version)] = cached

        logger.info("Skill cached: skill_id=%s version=%s path=%s", skill_id, version, cached.path)
        return cached


    # -------------------------------------------------------------------------
    # Evict
    # -------------------------------------------------------------------------

    def evict_other_versions(self, skill_id: str, keep_version: str) -> list[str]:
        """Delete every cached version of a skill except ``keep_version``.

        Deletion failures are logged and skipped per entry.

        Returns:
            Versions that were removed
        """
        removed: list[str] = []
        try:
            skill_dir = self.skill_dir(skill_id)
        except FilesystemError as e:
            logger.warning("Skipping eviction: %s", e)
            return removed

        try:
            entries = sorted(skill_dir.iterdir()) if skill_dir.is_dir() else []
        except OSError as e:
            logger.warning("Failed to list versions for eviction: skill_id=%s error=%s", skill_id, e)
            entries = []

        mirrored = self._mirrored_names(skill_dir) if entries else set()

        for entry in entries:
            if entry.name == keep_version or entry.name in mirrored:
                continue
            if not entry.is_dir():
                continue
            try:
                shutil.rmtree(entry)
            except OSError as e:
                logger.warning(
                    "Failed to remove old version: skill_id=%s version=%s error=%s",
                    skill_id, entry.name, e,
                )
                continue
            removed.append(entry.name)
            logger.debug("Removed old version: skill_id=%s version=%s", skill_id, entry.name)

        with self._lock:
            for key in [k for k in self._index if k[0] == skill_id and k[1] != keep_version]:
                if key[1] not in removed and self._index[key].path.is_dir():
                    # rmtree failed above; the directory is still there
                    continue
                del self._index[key]

        return removed

    def remove_skill(self, skill_id: str) -> bool:
        """Remove every cached version and mirror of a skill."""
        try:
            skill_dir = self.skill_dir(skill_id)
        except FilesystemError as e:
            logger.warning("Skipping skill removal: %s", e)
            return False
        with self._lock:
            for key in [k for k in self._index if k[0] == skill_id]:
                del self._index[key]

        if not skill_dir.exists():
            return False
        try:
            shutil.rmtree(skill_dir)
        except OSError as e:
            logger.warning("Failed to remove skill cache: skill_id=%s error=%s", skill_id, e)
            return False
        logger.info("Removed skill cache: skill_id=%s", skill_id)
        return True

    # -------------------------------------------------------------------------
    # Content delivery
    # -------------------------------------------------------------------------

    def read_primary_document(self, cached: Union[CachedVersion, Path]) -> str:
        """Read the primary document of a materialized version.

        Raises:
            NotFoundError: If the document is missing from the version directory
            FilesystemError: If the document cannot be read
        """
        root = cached.path if isinstance(cached, CachedVersion) else Path(cached)
        document = root / PRIMARY_DOCUMENT
        if not document.is_file():
            raise NotFoundError(f"{PRIMARY_DOCUMENT} not found in {root}")
        try:
            return document.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise FilesystemError(f"Cannot read {document}: {e}") from e

    def mirror(self, cached: CachedVersion) -> Path:
        """Copy the version tree to the version-less ``<cache_root>/<skill_id>/``.

        Previously mirrored entries are removed first. Cached version
        directories are never touched.

        Returns:
            The mirrored skill directory

        Raises:
            FilesystemError: If the skill id is unsafe or the copy fails part way
        """
        skill_dir = self.skill_dir(cached.skill_id)
        versions = set(self.versions_for(cached.skill_id)) | {cached.version}

        try:
            entries = {p.name for p in cached.path.iterdir()} - versions - {MIRROR_RECORD}
            previous = self._mirrored_names(skill_dir) - versions

            # Record the union first so a partial copy is never scanned as a version
            self._write_mirror_record(skill_dir, cached.version, previous | entries)

            for name in sorted(previous | entries):
                _remove_path(skill_dir / name)

            for name in sorted(entries):
                source = cached.path / name
                if source.is_dir():
                    shutil.copytree(source, skill_dir / name)
                else:
                    shutil.copy2(source, skill_dir / name)

            self._write_mirror_record(skill_dir, cached.version, entries)
        except OSError as e:
            raise FilesystemError(
                f"Failed to mirror skill {cached.skill_id}@{cached.version}: {e}"
            ) from e

        logger.debug("Mirrored skill: skill_id=%s version=%s dest=%s", cached.skill_id, cached.version, skill_dir)
        return skill_dir
