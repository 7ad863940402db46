"""Artifact storage for files handed from one job to another."""

import asyncio
import logging
import shutil
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pipeline_orchestrator.errors import ArtifactExpiredError
from pipeline_orchestrator.models.result import ArtifactHandle

log = logging.getLogger(__name__)

DEFAULT_RETENTION = timedelta(days=30)
EXPIRY_FILE = ".expires_at"


class ArtifactStore(ABC):
    """Storage collaborator for job artifacts.

    Retention is the store's concern: the engine passes the retention period
    along and a store refuses to serve handles past their expiry.
    """

    @abstractmethod
    async def put(
        self,
        job_id: str,
        paths: Sequence[str],
        retention: timedelta = DEFAULT_RETENTION,
    ) -> ArtifactHandle:
        """Store the given paths and return a handle to them."""

    @abstractmethod
    async def get(self, handle: ArtifactHandle) -> Sequence[Path]:
        """Return local paths of the stored files."""


class LocalArtifactStore(ArtifactStore):
    """Artifact store on the local filesystem.

    Paths are resolved relative to ``source_dir`` (the job workspace) and
    copied under ``root/<job_id>/<upload id>``.
    """

    def __init__(
        self,
        root: Path,
        source_dir: Path,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.root = root
        self.source_dir = source_dir
        self.clock = clock

    async def put(
        self,
        job_id: str,
        paths: Sequence[str],
        retention: timedelta = DEFAULT_RETENTION,
    ) -> ArtifactHandle:
        """Copy the existing paths into the store; missing paths are skipped."""
        location = self.root / job_id / uuid.uuid4().hex
        expires_at = self.clock() + retention
        stored = await asyncio.to_thread(self._copy_in, location, paths, expires_at)
        log.info("Stored %d artifact path(s) for %s", len(stored), job_id)
        return ArtifactHandle(
            job_id=job_id, location=location, paths=stored, expires_at=expires_at
        )

    async def get(self, handle: ArtifactHandle) -> Sequence[Path]:
        """Return stored paths for a handle that has not expired.

        Raises:
            ArtifactExpiredError: If the handle's retention period has passed
            FileNotFoundError: If the stored files are gone

        """
        if self.clock() >= handle.expires_at:
            raise ArtifactExpiredError(
                f"Artifacts of {handle.job_id} expired at {handle.expires_at}"
            )
        if not handle.location.exists():
            raise FileNotFoundError(f"Artifacts not found: {handle.location}")
        return [handle.location / path for path in handle.paths]

    async def purge_expired(self) -> int:
        """Delete every upload past its expiry and return how many were removed."""
        return await asyncio.to_thread(self._purge)

    def _copy_in(
        self, location: Path, paths: Sequence[str], expires_at: datetime
    ) -> Sequence[str]:
        location.mkdir(parents=True, exist_ok=True)
        (location / EXPIRY_FILE).write_text(expires_at.isoformat())

        stored: list[str] = []
        for path in paths:
            source = self.source_dir / path
            target = location / path
            if source.is_dir():
                shutil.copytree(source, target, dirs_exist_ok=True)
            elif source.is_file():
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
            else:
                log.warning("Artifact path %s not found in %s", path, self.source_dir)
                continue
            stored.append(path)
        return stored

    def _purge(self) -> int:
        removed = 0
        now = self.clock()
        for expiry_file in self.root.glob(f"*/*/{EXPIRY_FILE}"):
            if datetime.fromisoformat(expiry_file.read_text().strip()) <= now:
                shutil.rmtree(expiry_file.parent)
                removed += 1
        return removed
