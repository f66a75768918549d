"""Job queue backends: in-memory, JSON files, Upstash Redis REST."""

import asyncio
import json
import logging
import os
import time
import uuid
from abc import ABC, abstractmethod
from functools import partial
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from ..config import Config
from ..errors import JobNotFoundError
from ..models import Job, JobStatus, utc_now

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def new_job_id() -> str:
    return f"job_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _apply_changes(job: Job, status: Optional[JobStatus], result: Any, error: Any) -> Job:
    if status is not None:
        job.status = status
    if result is not _UNSET:
        job.result = result
    if error is not _UNSET:
        job.error = error
    job.updated_at = utc_now()
    return job


class JobQueue(ABC):
    """
    Storage for recommendation jobs.

    Lifecycle: pending -> processing (once, via claim_job) -> completed | failed.
    No durability or ordering guarantees beyond what the backend gives.
    """

    name = "base"

    @abstractmethod
    async def add_job(self, user_profile: Dict[str, Any]) -> str:
        """Store a new pending job and return its id."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def _save(self, job: Job) -> None:
        ...

    @abstractmethod
    async def list_jobs(self) -> List[Job]:
        ...

    @abstractmethod
    async def delete_job(self, job_id: str) -> bool:
        ...

    @abstractmethod
    async def claim_job(self, job_id: str) -> bool:
        """
        Move a job from pending to processing.

        Returns:
            True for exactly one caller; False if the job is missing, not
            pending, or already claimed
        """

    async def update_job(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        result: Any = _UNSET,
        error: Any = _UNSET,
    ) -> Job:
        job = await self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        job = _apply_changes(job, status, result, error)
        await self._save(job)
        return job

    async def get_jobs_by_status(self, status: JobStatus) -> List[Job]:
        """Jobs with the given status, oldest first."""
        jobs = [job for job in await self.list_jobs() if job.status == status]
        return sorted(jobs, key=lambda j: j.created_at)

    async def latest_completed(self) -> Optional[Job]:
        jobs = await self.get_jobs_by_status(JobStatus.COMPLETED)
        return max(jobs, key=lambda j: j.updated_at) if jobs else None

    def _new_job(self, user_profile: Dict[str, Any]) -> Job:
        now = utc_now()
        return Job(
            id=new_job_id(),
            status=JobStatus.PENDING,
            user_profile=user_profile,
            created_at=now,
            updated_at=now,
        )


class InMemoryJobQueue(JobQueue):
    """Process-local queue; jobs are lost on restart."""

    name = "memory"

    def __init__(self):
        self._jobs: Dict[str, Dict[str, Any]] = {}

    async def add_job(self, user_profile: Dict[str, Any]) -> str:
        job = self._new_job(user_profile)
        self._jobs[job.id] = job.to_dict()
        logger.info("Job %s queued (memory)", job.id)
        return job.id

    async def get_job(self, job_id: str) -> Optional[Job]:
        data = self._jobs.get(job_id)
        return Job.from_dict(data) if data else None

    async def _save(self, job: Job) -> None:
        self._jobs[job.id] = job.to_dict()

    async def list_jobs(self) -> List[Job]:
        return [Job.from_dict(data) for data in self._jobs.values()]

    async def delete_job(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    async def claim_job(self, job_id: str) -> bool:
        # No await between check and write, so this is atomic on one event loop
        data = self._jobs.get(job_id)
        if not data or data["status"] != JobStatus.PENDING.value:
            return False
        job = _apply_changes(Job.from_dict(data), JobStatus.PROCESSING, _UNSET, _UNSET)
        self._jobs[job_id] = job.to_dict()
        return True


class FileJobQueue(JobQueue):
    """
    One JSON document per job under a directory.

    Writes go to a temp file and are renamed into place. Claims create an
    exclusive ``<id>.claim`` marker so separate worker processes cannot both
    claim the same job.
    """

    name = "file"

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, job_id: str) -> Path:
        return self.directory / f"{job_id}.json"

    def _claim_path(self, job_id: str) -> Path:
        return self.directory / f"{job_id}.claim"

    def _load(self, path: Path) -> Optional[Job]:
        try:
            with path.open("r", encoding="utf-8") as fh:
                return Job.from_dict(json.load(fh))
        except FileNotFoundError:
            return None
        except (ValueError, KeyError) as exc:
            logger.warning("Skipping unreadable job file %s: %s", path.name, exc)
            return None

    async def _save(self, job: Job) -> None:
        path = self._path(job.id)
        tmp_path = path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            json.dump(job.to_dict(), fh, ensure_ascii=True, indent=2)
        tmp_path.replace(path)

    async def add_job(self, user_profile: Dict[str, Any]) -> str:
        job = self._new_job(user_profile)
        await self._save(job)
        logger.info("Job %s queued (file: %s)", job.id, self.directory)
        return job.id

    async def get_job(self, job_id: str) -> Optional[Job]:
        return self._load(self._path(job_id))

    async def list_jobs(self) -> List[Job]:
        jobs = []
        for path in sorted(self.directory.glob("*.json")):
            job = self._load(path)
            if job is not None:
                jobs.append(job)
        return jobs

    async def delete_job(self, job_id: str) -> bool:
        self._claim_path(job_id).unlink(missing_ok=True)
        path = self._path(job_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    async def claim_job(self, job_id: str) -> bool:
        job = await self.get_job(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return False
        try:
            fd = os.open(self._claim_path(job_id), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        os.close(fd)
        await self._save(_apply_changes(job, JobStatus.PROCESSING, _UNSET, _UNSET))
        return True


class UpstashJobQueue(JobQueue):
    """
    Jobs as JSON strings in Upstash Redis, reached over its REST API.

    Keys: ``<prefix>:job:<id>`` per job and a ``<prefix>:jobs`` set of ids.
    Claims use ``SET ... NX`` on a per-job marker key. The REST calls are
    blocking and run in the default executor.
    """

    name = "redis"

    def __init__(self, rest_url: str, rest_token: str, key_prefix: str = "gains", timeout_sec: float = 5.0, claim_ttl: int = 3600):
        self.rest_url = rest_url.rstrip("/")
        self.rest_token = rest_token
        self.key_prefix = key_prefix
        self.timeout_sec = timeout_sec
        self.claim_ttl = claim_ttl

    def _command_sync(self, *args: str) -> Any:
        resp = requests.post(
            self.rest_url,
            headers={
                "Authorization": f"Bearer {self.rest_token}",
                "Content-Type": "application/json",
            },
            json=list(args),
            timeout=self.timeout_sec,
        )
        resp.raise_for_status()
        payload = resp.json()
        if payload.get("error"):
            raise RuntimeError(f"Upstash error: {payload['error']}")
        return payload.get("result")

    async def _command(self, *args: str) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._command_sync, *args))

    def _job_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:job:{job_id}"

    def _claim_key(self, job_id: str) -> str:
        return f"{self.key_prefix}:job:{job_id}:claim"

    @property
    def _index_key(self) -> str:
        return f"{self.key_prefix}:jobs"

    async def _save(self, job: Job) -> None:
        await self._command("SET", self._job_key(job.id), json.dumps(job.to_dict(), ensure_ascii=True))

    async def add_job(self, user_profile: Dict[str, Any]) -> str:
        job = self._new_job(user_profile)
        await self._save(job)
        await self._command("SADD", self._index_key, job.id)
        logger.info("Job %s queued (redis)", job.id)
        return job.id

    async def get_job(self, job_id: str) -> Optional[Job]:
        raw = await self._command("GET", self._job_key(job_id))
        if raw is None:
            return None
        return Job.from_dict(json.loads(raw))

    async def list_jobs(self) -> List[Job]:
        ids = await self._command("SMEMBERS", self._index_key) or []
        if not ids:
            return []
        raws = await self._command("MGET", *[self._job_key(job_id) for job_id in ids])
        jobs = []
        for job_id, raw in zip(ids, raws or []):
            if raw is None:
                # Index entry without a document; drop it
                await self._command("SREM", self._index_key, job_id)
                continue
            jobs.append(Job.from_dict(json.loads(raw)))
        return jobs

    async def delete_job(self, job_id: str) -> bool:
        deleted = await self._command("DEL", self._job_key(job_id), self._claim_key(job_id))
        await self._command("SREM", self._index_key, job_id)
        return bool(deleted)

    async def claim_job(self, job_id: str) -> bool:
        job = await self.get_job(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return False
        won = await self._command("SET", self._claim_key(job_id), "1", "EX", str(self.claim_ttl), "NX")
        if won != "OK":
            return False
        await self._save(_apply_changes(job, JobStatus.PROCESSING, _UNSET, _UNSET))
        return True


def create_job_queue(config: Config) -> JobQueue:
    """Pick the backend from JOB_QUEUE_TYPE (memory | file | redis)."""
    kind = config.job_queue_type
    if kind == "memory":
        logger.info("Job queue: in-memory")
        return InMemoryJobQueue()
    if kind == "redis":
        if config.upstash_redis_rest_url and config.upstash_redis_rest_token:
            logger.info("Job queue: Upstash Redis")
            return UpstashJobQueue(config.upstash_redis_rest_url, config.upstash_redis_rest_token)
        logger.warning("JOB_QUEUE_TYPE=redis but Upstash credentials missing; fallback to file")
    elif kind != "file":
        logger.warning("Unknown JOB_QUEUE_TYPE=%r; fallback to file", kind)
    logger.info("Job queue: files in %s", config.job_queue_dir)
    return FileJobQueue(Path(config.job_queue_dir))
