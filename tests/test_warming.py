# ABOUTME: Unit tests for the warming scheduler, load throttle and background agent loop
# ABOUTME: Tests usage analysis, job creation, bounded dispatch, retries with backoff and deferral

import asyncio
import tempfile
from typing import AsyncGenerator, Generator, List, Optional

import pytest
import pytest_asyncio

from cachemodels import (
    CacheConfig,
    JobStatus,
    MetricSource,
    PriorityEnum,
    WarmingConfig,
    WarmingJob,
    WarmingReport,
)
from opcache.manager import CacheManager
from opcache.orchestrator import CacheOrchestrator, FetchOperation
from warming import LoadThrottle, WarmingScheduler, never_throttle


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class RecordingSleep:
    """Replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def constant_factory(value=None):
    def factory(job: WarmingJob) -> Optional[FetchOperation]:
        async def fetch():
            return value if value is not None else {"warmed": job.cache_key}

        return fetch

    return factory


class TestWarmingScheduler:
    """Test suite for WarmingScheduler."""

    @pytest.fixture
    def temp_cache_dir(self) -> Generator[str, None, None]:
        """Create temporary directory for cache testing."""
        with tempfile.TemporaryDirectory() as temp_dir:
            yield temp_dir

    @pytest.fixture
    def clock(self) -> FakeClock:
        return FakeClock()

    @pytest_asyncio.fixture
    async def orchestrator(
        self, temp_cache_dir: str, clock: FakeClock
    ) -> AsyncGenerator[CacheOrchestrator, None]:
        manager = CacheManager(CacheConfig(disk_root=temp_cache_dir), clock=clock)
        orchestrator = CacheOrchestrator(manager)
        await orchestrator.initialize()
        yield orchestrator
        await manager.close()

    @pytest.fixture
    def sleep(self) -> RecordingSleep:
        return RecordingSleep()

    def _scheduler(
        self,
        orchestrator: CacheOrchestrator,
        factory=None,
        sleep: Optional[RecordingSleep] = None,
        **config,
    ) -> WarmingScheduler:
        return WarmingScheduler(
            orchestrator,
            fetch_factory=factory or constant_factory(),
            warming_config=WarmingConfig(**config),
            sleep=sleep or RecordingSleep(),
        )

    def _record(self, orchestrator: CacheOrchestrator, key: str, hits: int, misses: int):
        for _ in range(hits):
            orchestrator.metrics.record_hit("ec2", "describe-instances", 0.001, cache_key=key)
        for _ in range(misses):
            orchestrator.metrics.record_miss("ec2", "describe-instances", 2.0, cache_key=key)

    def test_analyze_usage_ranks_by_frequency_and_miss_rate(
        self, orchestrator: CacheOrchestrator
    ):
        """Test scoring, thresholds and exclusion of warming traffic."""
        self._record(orchestrator, "hot", hits=1, misses=3)
        self._record(orchestrator, "warm", hits=0, misses=2)
        self._record(orchestrator, "once", hits=0, misses=1)
        self._record(orchestrator, "always-hit", hits=3, misses=0)
        for _ in range(5):
            orchestrator.metrics.record_miss(
                "ec2", "describe-instances", 2.0, cache_key="warmed",
                source=MetricSource.WARMING,
            )

        scheduler = self._scheduler(orchestrator)
        recommendations = scheduler.analyze_usage(orchestrator.metrics.records())

        assert [r.cache_key for r in recommendations] == ["hot", "warm"]
        hot = recommendations[0]
        assert hot.access_count == 4
        assert hot.miss_rate == pytest.approx(0.75)
        assert hot.score == pytest.approx(3.0)
        assert hot.priority == PriorityEnum.MEDIUM
        assert recommendations[1].priority == PriorityEnum.LOW

    def test_analyze_usage_high_priority(self, orchestrator: CacheOrchestrator):
        self._record(orchestrator, "busy", hits=0, misses=12)

        recommendations = self._scheduler(orchestrator).analyze_usage(
            orchestrator.metrics.records()
        )

        assert recommendations[0].priority == PriorityEnum.HIGH

    def test_analyze_usage_empty_history(self, orchestrator: CacheOrchestrator):
        assert self._scheduler(orchestrator).analyze_usage([]) == []

    def test_create_jobs_filters_and_orders(self, orchestrator: CacheOrchestrator):
        """Test min_priority filtering and priority-first ordering."""
        self._record(orchestrator, "low", hits=0, misses=2)
        self._record(orchestrator, "high", hits=0, misses=12)
        self._record(orchestrator, "medium", hits=0, misses=4)
        scheduler = self._scheduler(orchestrator)
        recommendations = scheduler.analyze_usage(orchestrator.metrics.records())

        jobs = scheduler.create_jobs(recommendations)
        assert [j.cache_key for j in jobs] == ["high", "medium", "low"]
        assert all(j.status == JobStatus.PENDING for j in jobs)
        assert all(j.ttl == 300.0 for j in jobs)

        medium_up = scheduler.create_jobs(
            recommendations, WarmingConfig(min_priority=PriorityEnum.MEDIUM)
        )
        assert [j.cache_key for j in medium_up] == ["high", "medium"]

        capped = scheduler.create_jobs(recommendations, WarmingConfig(max_jobs=1))
        assert [j.cache_key for j in capped] == ["high"]

    @pytest.mark.asyncio
    async def test_schedule_warms_through_orchestrator(
        self, orchestrator: CacheOrchestrator
    ):
        """Test completed jobs leave the key cached in both tiers."""
        scheduler = self._scheduler(orchestrator, factory=constant_factory([1, 2]))
        job = WarmingJob(cache_key="k1", service="ec2", operation="describe-instances")

        report = await scheduler.schedule([job])

        assert report.completed == [job.job_id]
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1
        assert job.finished_at is not None
        assert orchestrator.manager.memory_cache.peek("k1").data == [1, 2]
        assert (await orchestrator.manager.disk_cache.get("k1")).data == [1, 2]
        assert orchestrator.metrics.records()[-1].source == MetricSource.WARMING

    @pytest.mark.asyncio
    async def test_schedule_respects_concurrency_limit(
        self, orchestrator: CacheOrchestrator
    ):
        """Test no more than concurrency_limit jobs are in flight."""
        in_flight = 0
        peak = 0

        def factory(job: WarmingJob):
            async def fetch():
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return job.cache_key

            return fetch

        scheduler = self._scheduler(orchestrator, factory=factory)
        jobs = [WarmingJob(cache_key=f"k{i}") for i in range(10)]

        report = await scheduler.schedule(jobs, concurrency_limit=3)

        assert len(report.completed) == 10
        assert 1 <= peak <= 3

    @pytest.mark.asyncio
    async def test_schedule_rejects_bad_limit(self, orchestrator: CacheOrchestrator):
        with pytest.raises(ValueError):
            await self._scheduler(orchestrator).schedule([], concurrency_limit=-1)

    @pytest.mark.asyncio
    async def test_retry_with_exponential_backoff(
        self, orchestrator: CacheOrchestrator, sleep: RecordingSleep
    ):
        """Test a job failing twice then succeeding completes within max_retries."""
        calls = 0

        def factory(job: WarmingJob):
            async def fetch():
                nonlocal calls
                calls += 1
                if calls < 3:
                    raise RuntimeError("Throttling")
                return "ok"

            return fetch

        scheduler = self._scheduler(
            orchestrator, factory=factory, sleep=sleep, max_retries=2, retry_delay=0.5
        )
        job = WarmingJob(cache_key="k1")

        report = await scheduler.schedule([job])

        assert report.completed == [job.job_id]
        assert job.attempts == 3
        assert sleep.delays == [0.5, 1.0]
        assert job.last_error == "Throttling"

    @pytest.mark.asyncio
    async def test_retries_exhausted(
        self, orchestrator: CacheOrchestrator, sleep: RecordingSleep
    ):
        def factory(job: WarmingJob):
            async def fetch():
                raise RuntimeError("AccessDenied")

            return fetch

        scheduler = self._scheduler(
            orchestrator, factory=factory, sleep=sleep, max_retries=1
        )
        job = WarmingJob(cache_key="k1")

        report = await scheduler.schedule([job])

        assert report.exhausted == [job.job_id]
        assert job.status == JobStatus.EXHAUSTED
        assert job.attempts == 2
        assert sleep.delays == [1.0]
        assert "k1" not in orchestrator.manager.memory_cache

    @pytest.mark.asyncio
    async def test_missing_fetch_operation(self, orchestrator: CacheOrchestrator):
        """Test jobs without a fetch operation are exhausted without attempts."""

        def broken_factory(job: WarmingJob):
            raise KeyError(job.cache_key)

        none_job = WarmingJob(cache_key="none")
        broken_job = WarmingJob(cache_key="broken")

        report = await self._scheduler(orchestrator, factory=lambda job: None).schedule(
            [none_job]
        )
        assert report.exhausted == [none_job.job_id]
        assert none_job.attempts == 0

        report = await self._scheduler(orchestrator, factory=broken_factory).schedule(
            [broken_job]
        )
        assert broken_job.status == JobStatus.EXHAUSTED

    @pytest.mark.asyncio
    async def test_terminal_jobs_are_skipped(self, orchestrator: CacheOrchestrator):
        job = WarmingJob(cache_key="k1", status=JobStatus.COMPLETED)

        report = await self._scheduler(orchestrator).schedule([job])

        assert report.total == 0

    @pytest.mark.asyncio
    async def test_throttle_defers_jobs(
        self, orchestrator: CacheOrchestrator, clock: FakeClock
    ):
        """Test peak load defers every job and leaves it pending."""
        self._record(orchestrator, "busy", hits=0, misses=5)
        throttle = LoadThrottle(orchestrator.metrics, max_requests=5, window_seconds=60)
        scheduler = WarmingScheduler(
            orchestrator, fetch_factory=constant_factory(), throttle=throttle
        )
        jobs = [WarmingJob(cache_key="a"), WarmingJob(cache_key="b")]

        report = await scheduler.schedule(jobs)

        assert report.deferred == [jobs[0].job_id, jobs[1].job_id]
        assert report.completed == []
        assert all(j.status == JobStatus.PENDING for j in jobs)
        assert throttle.suppressed == 2

        # Load leaves the window, warming resumes
        clock.now += 120
        report = await scheduler.schedule(jobs)
        assert len(report.completed) == 2

    @pytest.mark.asyncio
    async def test_failing_throttle_defers_jobs(self, orchestrator: CacheOrchestrator):
        """Test a throttle that raises defers the run instead of aborting it."""
        factory_calls = []

        def factory(job):
            factory_calls.append(job.cache_key)
            return constant_factory()(job)

        def broken_throttle() -> bool:
            raise RuntimeError("metrics unavailable")

        scheduler = WarmingScheduler(
            orchestrator, fetch_factory=factory, throttle=broken_throttle
        )
        jobs = [WarmingJob(cache_key=key) for key in ("a", "b", "c")]

        report = await scheduler.schedule(jobs)

        assert sorted(report.deferred) == sorted(j.job_id for j in jobs)
        assert report.completed == []
        assert report.exhausted == []
        assert all(j.status == JobStatus.PENDING for j in jobs)
        assert factory_calls == []

    def test_load_throttle_ignores_warming_traffic(self, orchestrator: CacheOrchestrator):
        for _ in range(10):
            orchestrator.metrics.record_miss(
                "ec2", "describe-instances", 1.0, source=MetricSource.WARMING
            )
        throttle = LoadThrottle(orchestrator.metrics, max_requests=1)

        assert throttle.current_load() == 0
        assert throttle() is False
        assert never_throttle() is False

    def test_load_throttle_validation(self, orchestrator: CacheOrchestrator):
        with pytest.raises(ValueError):
            LoadThrottle(orchestrator.metrics, max_requests=0)
        with pytest.raises(ValueError):
            LoadThrottle(orchestrator.metrics, max_requests=1, window_seconds=0)

    @pytest.mark.asyncio
    async def test_run_once_uses_recorded_metrics(self, orchestrator: CacheOrchestrator):
        """Test a full cycle from metrics to a warmed cache entry."""
        self._record(orchestrator, "hot", hits=0, misses=3)
        scheduler = self._scheduler(orchestrator)

        report = await scheduler.run_cycle()

        assert len(report.completed) == 1
        assert orchestrator.manager.memory_cache.peek("hot").data == {"warmed": "hot"}

    @pytest.mark.asyncio
    async def test_process_without_recommendations(self, orchestrator: CacheOrchestrator):
        report = await self._scheduler(orchestrator).process([])

        assert report == WarmingReport()


class TestBackgroundLoop:
    """Test suite for the periodic agent loop."""

    @pytest.fixture
    def temp_cache_dir(self) -> Generator[str, None, None]:
        with tempfile.TemporaryDirectory() as temp_dir:
            yield temp_dir

    @pytest_asyncio.fixture
    async def scheduler(self, temp_cache_dir: str) -> AsyncGenerator[WarmingScheduler, None]:
        manager = CacheManager(CacheConfig(disk_root=temp_cache_dir))
        orchestrator = CacheOrchestrator(manager)
        await orchestrator.initialize()
        scheduler = WarmingScheduler(orchestrator, fetch_factory=constant_factory())
        yield scheduler
        await scheduler.cleanup()
        await manager.close()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, scheduler: WarmingScheduler):
        cycles = 0

        async def run_once():
            nonlocal cycles
            cycles += 1
            if cycles == 1:
                raise RuntimeError("first cycle fails")
            return WarmingReport()

        scheduler.run_once = run_once
        scheduler.start(interval=0.01)
        assert scheduler.running

        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert not scheduler.running
        # A failed cycle does not end the loop
        assert cycles >= 2

    @pytest.mark.asyncio
    async def test_start_validation(self, scheduler: WarmingScheduler):
        with pytest.raises(ValueError):
            scheduler.start(interval=0)

        scheduler.start(interval=10)
        with pytest.raises(RuntimeError):
            scheduler.start(interval=10)
        await scheduler.stop()
