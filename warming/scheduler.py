# ABOUTME: Warming scheduler predicting useful cache keys from usage metrics and pre-populating them
# ABOUTME: Dispatches jobs through a bounded worker pool with throttling, retries and exponential backoff

import asyncio
import time
from collections import defaultdict
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from cachemodels import (
    JobStatus,
    MetricRecord,
    MetricSource,
    PriorityEnum,
    WarmingConfig,
    WarmingJob,
    WarmingRecommendation,
    WarmingReport,
    priority_rank,
)
from opcache.orchestrator import CacheOrchestrator, FetchOperation

from .base import BaseAgent
from .throttle import ThrottlePredicate, never_throttle

FetchFactory = Callable[[WarmingJob], Optional[FetchOperation]]


class WarmingScheduler(BaseAgent):
    """Proactively resolves keys that usage history predicts will be requested."""

    def __init__(
        self,
        orchestrator: CacheOrchestrator,
        fetch_factory: FetchFactory,
        warming_config: Optional[WarmingConfig] = None,
        throttle: Optional[ThrottlePredicate] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize scheduler with the orchestrator it warms through."""
        self.warming_config = warming_config or WarmingConfig()
        super().__init__(self.warming_config.model_dump())
        self.orchestrator = orchestrator
        self.fetch_factory = fetch_factory
        self.throttle = throttle or never_throttle
        self._sleep = sleep

    def analyze_usage(
        self, history: Iterable[MetricRecord]
    ) -> List[WarmingRecommendation]:
        """Rank keys by access frequency times miss rate."""
        grouped: Dict[str, List[MetricRecord]] = defaultdict(list)
        for record in history:
            # Warming traffic would otherwise reinforce its own predictions
            if record.source != MetricSource.REQUEST or not record.cache_key:
                continue
            grouped[record.cache_key].append(record)

        recommendations = []
        for cache_key, records in grouped.items():
            access_count = len(records)
            if access_count < self.warming_config.min_accesses:
                continue

            misses = sum(1 for r in records if not r.cache_hit)
            miss_rate = misses / access_count
            score = access_count * miss_rate
            if score <= 0:
                continue

            latest = max(records, key=lambda r: r.timestamp)
            recommendations.append(
                WarmingRecommendation(
                    cache_key=cache_key,
                    service=latest.service,
                    operation=latest.operation,
                    access_count=access_count,
                    miss_rate=miss_rate,
                    avg_duration=sum(r.duration for r in records) / access_count,
                    score=score,
                    priority=self._priority_for(score),
                )
            )

        recommendations.sort(key=lambda r: (-r.score, -r.avg_duration, r.cache_key))
        return recommendations

    def create_jobs(
        self,
        recommendations: Iterable[WarmingRecommendation],
        config: Optional[WarmingConfig] = None,
    ) -> List[WarmingJob]:
        """Turn recommendations into pending jobs, highest priority first."""
        config = config or self.warming_config
        lowest_rank = priority_rank(config.min_priority)

        eligible = [
            r for r in recommendations if priority_rank(r.priority) <= lowest_rank
        ]
        eligible.sort(key=lambda r: (priority_rank(r.priority), -r.score))

        return [
            WarmingJob(
                cache_key=r.cache_key,
                service=r.service,
                operation=r.operation,
                priority=r.priority,
                strategy=config.strategy,
                ttl=config.ttl,
            )
            for r in eligible[: config.max_jobs]
        ]

    async def schedule(
        self, jobs: Iterable[WarmingJob], concurrency_limit: Optional[int] = None
    ) -> WarmingReport:
        """Dispatch jobs through at most concurrency_limit concurrent workers."""
        limit = concurrency_limit or self.warming_config.concurrency_limit
        if limit <= 0:
            raise ValueError("concurrency_limit must be positive")

        started = time.perf_counter()
        report = WarmingReport()
        queue: "asyncio.Queue[WarmingJob]" = asyncio.Queue()
        pending = [job for job in jobs if not job.is_terminal]
        for job in sorted(pending, key=lambda j: priority_rank(j.priority)):
            queue.put_nowait(job)

        async def worker() -> None:
            while True:
                try:
                    job = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    throttled = self.throttle()
                except Exception as e:
                    self.logger.warning(
                        f"Throttle check failed for {job.cache_key}, deferring: {e}"
                    )
                    throttled = True
                if throttled:
                    job.status = JobStatus.PENDING
                    report.deferred.append(job.job_id)
                    continue
                await self._run_job(job, report)

        worker_count = min(limit, max(len(pending), 1))
        workers = [asyncio.create_task(worker()) for _ in range(worker_count)]
        await asyncio.gather(*workers)

        report.duration = time.perf_counter() - started
        self.logger.info(
            f"Warming run finished: {len(report.completed)} completed, "
            f"{len(report.exhausted)} exhausted, {len(report.deferred)} deferred"
        )
        return report

    async def process(self, history: Iterable[MetricRecord]) -> WarmingReport:
        """Analyze history, create jobs and schedule them."""
        jobs = self.create_jobs(self.analyze_usage(history))
        if not jobs:
            return WarmingReport()
        return await self.schedule(jobs)

    async def run_once(self) -> WarmingReport:
        """One warming cycle over the orchestrator's recorded metrics."""
        return await self.process(self.orchestrator.metrics.records())

    async def run_cycle(self) -> WarmingReport:
        return await self.run_once()

    async def _run_job(self, job: WarmingJob, report: WarmingReport) -> None:
        try:
            fetch = self.fetch_factory(job)
        except Exception as e:
            self.logger.warning(f"Fetch factory failed for {job.cache_key}: {e}")
            fetch = None

        if fetch is None:
            job.last_error = job.last_error or "No fetch operation for key"
            self._finish(job, JobStatus.EXHAUSTED)
            report.exhausted.append(job.job_id)
            return

        while True:
            job.status = JobStatus.ACTIVE
            job.attempts += 1
            if job.started_at is None:
                job.started_at = time.time()

            try:
                await self.orchestrator.resolve(
                    job.cache_key,
                    fetch,
                    job.ttl,
                    service=job.service or None,
                    operation=job.operation or None,
                    source=MetricSource.WARMING,
                )
            except Exception as e:
                job.status = JobStatus.FAILED
                job.last_error = str(e)
                self.logger.warning(
                    f"Warming {job.cache_key} failed (attempt {job.attempts}): {e}"
                )
                if job.attempts > self.warming_config.max_retries:
                    self._finish(job, JobStatus.EXHAUSTED)
                    report.exhausted.append(job.job_id)
                    return

                job.status = JobStatus.RETRYING
                await self._sleep(
                    self.warming_config.retry_delay * (2 ** (job.attempts - 1))
                )
                continue

            self._finish(job, JobStatus.COMPLETED)
            report.completed.append(job.job_id)
            return

    def _priority_for(self, score: float) -> PriorityEnum:
        if score >= self.warming_config.high_score:
            return PriorityEnum.HIGH
        if score >= self.warming_config.medium_score:
            return PriorityEnum.MEDIUM
        return PriorityEnum.LOW

    @staticmethod
    def _finish(job: WarmingJob, status: JobStatus) -> None:
        job.status = status
        job.finished_at = time.time()
