"""
Job Store
=========
Read/write contract for jobs, screens, progress messages and credits.

Implementations:
    - ``InMemoryJobStore``   process-local (tests, embedding)
    - ``JsonFileJobStore``   one JSON file per job under a directory (CLI)

Every mutation is keyed by job id and append/insert-only for screens and
progress messages, so concurrent jobs never touch each other's rows.
Credentials are kept in memory only and never written to disk.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import fields, replace
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .models import (
    Job, JobProgress, JobStatus, MessageType, ProgressMessage,
    Screen, ScreenStatus, ScreenType,
)

logger = logging.getLogger(__name__)


class JobStore(Protocol):

    async def create_job(self, job: Job) -> Job: ...

    async def get_job(self, job_id: str) -> Job: ...

    async def update_job(self, job_id: str, **changes) -> Job: ...

    async def scrub_credentials(self, job_id: str) -> None: ...

    async def insert_screen(self, screen: Screen) -> Screen: ...

    async def update_screen(self, screen_id: str, **changes) -> Screen: ...

    async def list_screens(self, job_id: str) -> List[Screen]: ...

    async def count_screens(self, job_id: str) -> int: ...

    async def add_progress(self, message: ProgressMessage) -> None: ...

    async def list_progress(self, job_id: str, limit: Optional[int] = None) -> List[ProgressMessage]: ...

    async def get_credits(self, user_id: str) -> int: ...

    async def set_credits(self, user_id: str, cents: int) -> None: ...


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

class InMemoryJobStore:
    """Dict-backed store.  State changes before the first await, so no lock
    is needed on a single event loop."""

    def __init__(self, default_credits: int = 300):
        self.default_credits = default_credits
        self._jobs: Dict[str, Job] = {}
        self._screens: Dict[str, List[Screen]] = {}
        self._progress: Dict[str, List[ProgressMessage]] = {}
        self._credits: Dict[str, int] = {}

    # ---- Jobs ----

    async def create_job(self, job: Job) -> Job:
        if job.id in self._jobs:
            raise ValueError(f"job {job.id} already exists")
        self._jobs[job.id] = job
        self._screens[job.id] = []
        self._progress[job.id] = []
        await self._persist(job.id)
        return job

    async def get_job(self, job_id: str) -> Job:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise KeyError(f"unknown job {job_id}") from None

    async def update_job(self, job_id: str, **changes) -> Job:
        """Apply all ``changes`` in one replacement (no partial updates)."""
        job = await self.get_job(job_id)
        known = {f.name for f in fields(Job)}
        unknown = set(changes) - known
        if unknown:
            raise AttributeError(f"Job has no field(s): {', '.join(sorted(unknown))}")
        updated = replace(job, **changes)
        self._jobs[job_id] = updated
        await self._persist(job_id)
        return updated

    async def scrub_credentials(self, job_id: str) -> None:
        job = await self.get_job(job_id)
        if job.credentials is not None:
            self._jobs[job_id] = replace(job, credentials=None)
            await self._persist(job_id)
            logger.info(f"[STORE] Credentials erased for job {job_id[:8]}")

    # ---- Screens ----

    async def insert_screen(self, screen: Screen) -> Screen:
        screens = self._screens.setdefault(screen.job_id, [])
        screens.append(screen)
        await self._persist(screen.job_id)
        return screen

    async def update_screen(self, screen_id: str, **changes) -> Screen:
        for job_id, screens in self._screens.items():
            for i, screen in enumerate(screens):
                if screen.id == screen_id:
                    screens[i] = replace(screen, **changes)
                    await self._persist(job_id)
                    return screens[i]
        raise KeyError(f"unknown screen {screen_id}")

    async def list_screens(self, job_id: str) -> List[Screen]:
        return sorted(self._screens.get(job_id, []), key=lambda s: s.order_index)

    async def count_screens(self, job_id: str) -> int:
        return len(self._screens.get(job_id, []))

    # ---- Progress ----

    async def add_progress(self, message: ProgressMessage) -> None:
        self._progress.setdefault(message.job_id, []).append(message)
        await self._persist(message.job_id)

    async def list_progress(self, job_id: str, limit: Optional[int] = None) -> List[ProgressMessage]:
        messages = self._progress.get(job_id, [])
        return list(messages[-limit:]) if limit else list(messages)

    # ---- Credits ----

    async def get_credits(self, user_id: str) -> int:
        return self._credits.get(user_id, self.default_credits)

    async def set_credits(self, user_id: str, cents: int) -> None:
        self._credits[user_id] = cents
        await self._persist_credits()

    # ---- Persistence hooks ----

    async def _persist(self, job_id: str) -> None:
        pass

    async def _persist_credits(self) -> None:
        pass


# ---------------------------------------------------------------------------
# JSON files
# ---------------------------------------------------------------------------

def _job_from_dict(data: dict) -> Job:
    data = dict(data)
    data["status"] = JobStatus(data["status"])
    data["progress"] = JobProgress(**(data.get("progress") or {}))
    data["credentials"] = None
    known = {f.name for f in fields(Job)}
    return Job(**{k: v for k, v in data.items() if k in known})


def _screen_from_dict(data: dict) -> Screen:
    data = dict(data)
    data["screen_type"] = ScreenType(data["screen_type"])
    data["status"] = ScreenStatus(data["status"])
    known = {f.name for f in fields(Screen)}
    return Screen(**{k: v for k, v in data.items() if k in known})


class JsonFileJobStore(InMemoryJobStore):
    """Persists each job (with its screens and progress) to ``<root>/jobs/<id>.json``.

    Loads existing files on construction so job status survives the
    process; a crawl itself is never resumed.
    """

    def __init__(self, root: str = ".docucrawl", default_credits: int = 300):
        super().__init__(default_credits=default_credits)
        self.root = Path(root)
        self._jobs_dir = self.root / "jobs"
        self._credits_path = self.root / "credits.json"
        self._locks: Dict[str, asyncio.Lock] = {}
        self._load()

    def _load(self) -> None:
        if self._credits_path.exists():
            try:
                self._credits = {k: int(v) for k, v in json.loads(self._credits_path.read_text("utf-8")).items()}
            except (json.JSONDecodeError, OSError, ValueError) as exc:
                logger.warning(f"[STORE] Corrupt credits file: {exc}")
        if not self._jobs_dir.exists():
            return
        for path in sorted(self._jobs_dir.glob("*.json")):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                job = _job_from_dict(data["job"])
            except (json.JSONDecodeError, OSError, KeyError, ValueError, TypeError) as exc:
                logger.warning(f"[STORE] Skipping corrupt job file {path.name}: {exc}")
                continue
            self._jobs[job.id] = job
            self._screens[job.id] = [_screen_from_dict(s) for s in data.get("screens", [])]
            self._progress[job.id] = [
                ProgressMessage(
                    job_id=m["job_id"], type=MessageType(m["type"]), message=m["message"],
                    screenshot_url=m.get("screenshot_url"), created_at=m.get("created_at", ""),
                )
                for m in data.get("progress", [])
            ]
        logger.info(f"[STORE] Loaded {len(self._jobs)} jobs from {self._jobs_dir}")

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _persist(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            return
        # Snapshot on the loop; serialize and write off it
        payload = {
            "job": job.to_dict(),
            "screens": [s.to_dict() for s in self._screens.get(job_id, [])],
            "progress": [
                {
                    "job_id": m.job_id, "type": m.type.value, "message": m.message,
                    "screenshot_url": m.screenshot_url, "created_at": m.created_at,
                }
                for m in self._progress.get(job_id, [])
            ],
        }
        path = self._jobs_dir / f"{job_id}.json"
        async with self._lock(job_id):
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, _write_json, path, payload)

    async def _persist_credits(self) -> None:
        async with self._lock("credits.json"):
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, _write_json, self._credits_path, dict(self._credits))


def _write_json(path: Path, payload: dict) -> None:
    """Atomic write: temp file in the same directory, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    tmp.replace(path)
