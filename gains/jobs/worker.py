"""Background worker that turns pending jobs into recommendation results."""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from pydantic import ValidationError

from ..errors import JobNotFoundError
from ..models import Job, JobStatus, UserProfile, utc_now
from ..services.recommendations import RecommendationGenerator
from .queue import JobQueue

logger = logging.getLogger(__name__)


class JobProcessor:
    """Polls the queue for pending jobs and runs the generator on them."""

    def __init__(
        self,
        queue: JobQueue,
        generator: RecommendationGenerator,
        poll_interval: float = 2.0,
        batch_size: int = 3,
        job_ttl_seconds: int = 600,
    ):
        self.queue = queue
        self.generator = generator
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.job_ttl_seconds = job_ttl_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def process_job(self, job: Job) -> bool:
        """
        Claim and run one job, writing the terminal state back to the queue.

        Returns:
            False when another worker already claimed the job
        """
        if not await self.queue.claim_job(job.id):
            logger.debug("Job %s already claimed, skipping", job.id)
            return False

        logger.info("Processing job %s", job.id)
        try:
            profile = UserProfile.model_validate(job.user_profile)
        except ValidationError as exc:
            logger.warning("Job %s has an invalid profile: %s", job.id, exc)
            await self.queue.update_job(job.id, status=JobStatus.FAILED, error=f"Invalid user profile: {exc}")
            return True

        try:
            result = await self.generator.generate(profile)
        except Exception as exc:
            logger.error("Job %s failed: %s", job.id, exc, exc_info=True)
            await self.queue.update_job(job.id, status=JobStatus.FAILED, error=str(exc) or type(exc).__name__)
            return True

        await self.queue.update_job(job.id, status=JobStatus.COMPLETED, result=result.to_dict(), error=None)
        logger.info("Job %s completed (%s, %d items)", job.id, result.source, len(result.recommendations))
        return True

    async def process_pending_jobs(self) -> int:
        """Process up to batch_size pending jobs, one after another."""
        pending = await self.queue.get_jobs_by_status(JobStatus.PENDING)
        if not pending:
            return 0
        logger.info("Found %d pending job(s), taking %d", len(pending), min(len(pending), self.batch_size))

        processed = 0
        for job in pending[: self.batch_size]:
            if await self.process_job(job):
                processed += 1
        return processed

    async def process_job_now(self, job_id: str) -> Job:
        """Run a specific job immediately instead of waiting for the poll loop."""
        job = await self.queue.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        await self.process_job(job)
        return await self.queue.get_job(job_id) or job

    async def cleanup_expired_jobs(self, now: Optional[datetime] = None) -> int:
        """Delete completed/failed jobs whose last update is older than the TTL."""
        cutoff = (now or utc_now()) - timedelta(seconds=self.job_ttl_seconds)
        removed = 0
        for job in await self.queue.list_jobs():
            if job.status.terminal and job.updated_at < cutoff:
                if await self.queue.delete_job(job.id):
                    removed += 1
        if removed:
            logger.info("Cleaned up %d expired job(s)", removed)
        return removed

    async def run_forever(self) -> None:
        self._running = True
        logger.info("Job processor started (interval: %.1fs, batch: %d)", self.poll_interval, self.batch_size)
        while self._running:
            try:
                await self.process_pending_jobs()
                await self.cleanup_expired_jobs()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                logger.info("Job processor stopped")
                break
            except Exception as e:
                logger.error("Job processor error: %s", e, exc_info=True)
                await asyncio.sleep(self.poll_interval)
        self._running = False

    def start(self) -> asyncio.Task:
        """Run the poll loop as a background task on the current event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Job processor stop requested")
