"""Durable build record storage.

Each build is stored as one JSON file named after its commit sha:

    {"author": ..., "title": ..., "url": ..., "date": "YYYY-MM-DD",
     "log": "Build started...", "update": "...", "<step id>": "..."}

Step logs are appended through update_log(), which serializes the
read-modify-write of a record per sha so concurrent steps of one build
never lose each other's output. Records for different shas are
updated independently.

The ten most recent builds are kept in memory for synchronous access.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ci_server.types import BuildSummary

logger = logging.getLogger(__name__)

SHA_PATTERN = re.compile(r"^[a-zA-Z0-9]{40}$")

# Number of builds kept in the recent builds cache
LATEST_BUILDS_LIMIT = 10

# Initial value of the primary log
BUILD_STARTED_MARKER = "Build started..."

# Record keys that are not step log slots
METADATA_KEYS = frozenset({"author", "title", "url", "date", "log"})


class BuildValidationError(Exception):
    """Raised when build input is malformed. Nothing is persisted."""

    def __init__(self, message: str, code: str = "invalid_sha") -> None:
        super().__init__(message)
        self.code = code


class StorageError(Exception):
    """Raised when a build record cannot be read or written."""

    def __init__(self, message: str, code: str = "storage_error") -> None:
        super().__init__(message)
        self.code = code


def verify_sha(sha: object) -> bool:
    """Return whether sha looks like a git commit hash."""
    return isinstance(sha, str) and SHA_PATTERN.match(sha) is not None


def step_slots(record: dict[str, Any]) -> list[str]:
    """Return the log slot names of a record, excluding metadata."""
    return [key for key in record if key not in METADATA_KEYS]


@dataclass
class _RecordLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class BuildStorage:
    """Reads, writes and indexes the build records in a directory."""

    def __init__(self, path: Path, latest_limit: int = LATEST_BUILDS_LIMIT) -> None:
        self.path = Path(path)
        self.latest_limit = latest_limit
        self._latest: list[BuildSummary] = []
        self._record_locks: dict[str, _RecordLock] = {}

    # Recent builds

    def get_latest_builds(self) -> list[BuildSummary]:
        """Return up to ten most recent builds, newest first.

        Served from memory; the filesystem is not touched.
        """
        return list(self._latest)

    def _remember(self, summary: BuildSummary) -> None:
        if any(build.sha == summary.sha for build in self._latest):
            return
        self._latest.insert(0, summary)
        del self._latest[self.latest_limit :]

    def scan_latest_builds(self) -> list[BuildSummary]:
        """Determine the most recent builds from file modification times.

        Unreadable or unparsable files are skipped.

        Returns:
            Up to latest_limit summaries, newest first.
        """
        try:
            entries = [
                entry
                for entry in self.path.iterdir()
                if verify_sha(entry.name) and entry.is_file()
            ]
        except OSError as e:
            logger.error("Unable to list build directory %s: %s", self.path, e)
            return []

        timed: list[tuple[float, Path]] = []
        for entry in entries:
            try:
                timed.append((entry.stat().st_mtime, entry))
            except OSError:
                continue
        timed.sort(key=lambda item: item[0], reverse=True)

        summaries: list[BuildSummary] = []
        for _, entry in timed:
            record = self._read_record(entry)
            if record is None:
                continue
            summaries.append(_summarize(entry.name, record))
            if len(summaries) >= self.latest_limit:
                break
        return summaries

    async def load_latest_builds(self) -> None:
        """Populate the recent builds cache from disk.

        Builds created while the scan runs keep their place at the front.
        """
        scanned = await asyncio.to_thread(self.scan_latest_builds)
        known = {build.sha for build in self._latest}
        self._latest.extend(build for build in scanned if build.sha not in known)
        del self._latest[self.latest_limit :]
        logger.info("Loaded %d recent builds from %s", len(self._latest), self.path)

    # Records

    def _record_path(self, sha: str) -> Path:
        return self.path / sha

    def _read_record(self, path: Path) -> dict[str, Any] | None:
        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("Build record %s does not exist", path.name)
            return None
        except OSError as e:
            logger.error("Unable to read build record %s: %s", path, e)
            return None

        try:
            record = json.loads(data)
        except json.JSONDecodeError as e:
            logger.error("Build record %s is not valid JSON: %s", path, e)
            return None

        if not isinstance(record, dict):
            logger.error("Build record %s is not a JSON object", path)
            return None
        return record

    def _write_record(self, sha: str, record: dict[str, Any]) -> None:
        path = self._record_path(sha)
        tmp_path = path.with_name(f".{sha}.tmp")
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Unable to create build directory {self.path}: {e}") from e

        try:
            with tmp_path.open("w", encoding="utf-8") as f:
                json.dump(record, f)
            os.replace(tmp_path, path)
        except OSError as e:
            with suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Unable to write build record {sha}: {e}") from e

    @asynccontextmanager
    async def _locked(self, sha: str) -> AsyncIterator[None]:
        entry = self._record_locks.setdefault(sha, _RecordLock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if not entry.users:
                del self._record_locks[sha]

    async def create_build(
        self,
        sha: str,
        author: str,
        title: str,
        url: str,
    ) -> dict[str, Any]:
        """Create the record for a new build.

        Args:
            sha: Commit hash of the change under review.
            author: Login of the pull request author.
            title: Pull request title.
            url: Pull request URL.

        Returns:
            The record as written, including its sha.

        Raises:
            BuildValidationError: If sha is malformed.
            StorageError: If the record cannot be written.
        """
        if not verify_sha(sha):
            raise BuildValidationError(f"Invalid commit sha: {sha!r}")

        record: dict[str, Any] = {
            "author": author,
            "title": title,
            "url": url,
            "date": datetime.now(timezone.utc).date().isoformat(),
            "log": BUILD_STARTED_MARKER,
        }

        async with self._locked(sha):
            await asyncio.to_thread(self._write_record, sha, record)

        self._remember(_summarize(sha, record))
        logger.info("Created build record for %s", sha)
        return {**record, "sha": sha}

    async def update_log(self, sha: str, slot: str, text: str) -> None:
        """Append text to a log slot of a build record.

        Args:
            sha: Commit hash of the build.
            slot: Step identifier, or "update" for the repository update.
            text: Text to append.

        Raises:
            BuildValidationError: If sha or slot is malformed.
            StorageError: If the record cannot be read or written.
        """
        if not verify_sha(sha):
            raise BuildValidationError(f"Invalid commit sha: {sha!r}")
        if not slot or slot in METADATA_KEYS:
            raise BuildValidationError(f"Invalid log slot: {slot!r}", code="invalid_slot")

        # A cancelled caller must not release the record while a write is in flight.
        await asyncio.shield(self._append(sha, slot, text))

    async def _append(self, sha: str, slot: str, text: str) -> None:
        async with self._locked(sha):
            record = await asyncio.to_thread(self._read_record, self._record_path(sha))
            if record is None:
                raise StorageError(f"Build record {sha} is unavailable")
            record[slot] = record.get(slot, "") + text
            await asyncio.to_thread(self._write_record, sha, record)

    async def get_build(self, sha: str) -> dict[str, Any] | None:
        """Load a build record.

        Args:
            sha: Commit hash of the build.

        Returns:
            The record, or None if sha is malformed, the record does not
            exist or cannot be parsed.
        """
        if not verify_sha(sha):
            return None
        return await asyncio.to_thread(self._read_record, self._record_path(sha))


def _summarize(sha: str, record: dict[str, Any]) -> BuildSummary:
    return BuildSummary(
        sha=sha,
        date=str(record.get("date", "")),
        author=str(record.get("author", "")),
        title=str(record.get("title", "")),
        url=str(record.get("url", "")),
    )


__all__ = [
    "BUILD_STARTED_MARKER",
    "LATEST_BUILDS_LIMIT",
    "METADATA_KEYS",
    "BuildStorage",
    "BuildValidationError",
    "StorageError",
    "step_slots",
    "verify_sha",
]
