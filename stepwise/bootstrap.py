"""Component wiring for Stepwise.

Builds the configured store, queue, lease, engine, worker and API surface
from Settings. Nothing here is global: every call returns a fresh runtime.

Example usage:

    from stepwise.bootstrap import build_planning_runtime
    from stepwise.config import get_settings
    from stepwise.planning import FunctionStepExecutor, StepSpec

    runtime = build_planning_runtime(get_settings(), FunctionStepExecutor(run_turn))
    await runtime.start()

    plan = await runtime.service.create_plan(
        name="Onboarding",
        subject_key="+15550100",
        owner_key="+15550199",
        steps=[StepSpec.from_hours("Send welcome", 0)],
    )
"""

from dataclasses import dataclass, field

import redis.asyncio as redis
from prometheus_client import start_http_server

from stepwise.config.settings import Settings
from stepwise.observability.logging import get_logger, setup_logging
from stepwise.planning.engine import PlanExecutionEngine
from stepwise.planning.executors.base import StepExecutor
from stepwise.planning.lease import InMemoryPlanLease, PlanLease, RedisPlanLease
from stepwise.planning.queue import DelayScheduler
from stepwise.planning.queues.inmemory import InMemoryDelayScheduler
from stepwise.planning.queues.redis import RedisDelayScheduler
from stepwise.planning.service import PlanningService
from stepwise.planning.store import PlanStore
from stepwise.planning.stores.inmemory import InMemoryPlanStore
from stepwise.planning.stores.redis import RedisPlanStore
from stepwise.planning.tools import PlanningTools
from stepwise.planning.worker import PlanQueueWorker

logger = get_logger(__name__)


@dataclass
class PlanningRuntime:
    """Wired planning components."""

    settings: Settings
    store: PlanStore
    scheduler: DelayScheduler
    lease: PlanLease | None
    engine: PlanExecutionEngine
    service: PlanningService
    tools: PlanningTools
    worker: PlanQueueWorker
    redis_clients: list[redis.Redis] = field(default_factory=list)

    async def start(self) -> None:
        """Start the metrics endpoint (if enabled) and the queue worker."""
        metrics = self.settings.observability.metrics
        if metrics.enabled:
            start_http_server(metrics.port)
            logger.info("metrics_server_started", port=metrics.port)

        await self.worker.start()

    async def stop(self) -> None:
        """Stop the worker and close Redis clients created by the runtime."""
        await self.worker.stop()
        for client in self.redis_clients:
            await client.aclose()
        self.redis_clients.clear()


class _RedisClients:
    """Creates one client per connection URL, unless a shared client is given."""

    def __init__(self, shared: redis.Redis | None) -> None:
        self._shared = shared
        self._by_url: dict[str, redis.Redis] = {}

    def get(self, section: str, url: str | None) -> redis.Redis:
        if self._shared is not None:
            return self._shared
        if not url:
            raise ValueError(
                f"{section}.connection_url is required for the redis backend "
                f"(set STEPWISE_{section.upper().replace('.', '__')}__CONNECTION_URL)"
            )
        if url not in self._by_url:
            self._by_url[url] = redis.from_url(url, decode_responses=True)
            logger.info("redis_client_created", section=section, url=url.split("@")[-1])
        return self._by_url[url]

    @property
    def owned(self) -> list[redis.Redis]:
        return list(self._by_url.values())


def build_planning_runtime(
    settings: Settings,
    executor: StepExecutor,
    redis_client: redis.Redis | None = None,
) -> PlanningRuntime:
    """Wire planning components from settings.

    Args:
        settings: Loaded configuration
        executor: Step executor supplied by the agent runtime
        redis_client: Client shared by every Redis backend; when omitted, a
            client is created per configured connection URL and closed by
            PlanningRuntime.stop()

    Returns:
        PlanningRuntime with all components constructed (worker not started)
    """
    log_config = settings.observability.logging
    setup_logging(
        level=log_config.level,
        format=log_config.format,
        redact_pii=log_config.redact_pii,
    )

    clients = _RedisClients(redis_client)

    store: PlanStore
    if settings.storage.backend == "redis":
        store = RedisPlanStore(
            clients.get("storage", settings.storage.connection_url),
            settings.storage,
        )
    else:
        store = InMemoryPlanStore()

    scheduler: DelayScheduler
    if settings.queue.backend == "redis":
        scheduler = RedisDelayScheduler(
            clients.get("queue", settings.queue.connection_url),
            settings.queue,
        )
    else:
        scheduler = InMemoryDelayScheduler(settings.queue)

    lease_config = settings.engine.lease
    lease: PlanLease | None = None
    if lease_config.enabled and lease_config.backend == "redis":
        lease = RedisPlanLease(
            clients.get("engine.lease", lease_config.connection_url),
            lock_timeout=lease_config.lock_timeout_seconds,
            blocking_timeout=lease_config.blocking_timeout_seconds,
            key_prefix=lease_config.key_prefix,
        )
    elif lease_config.enabled:
        lease = InMemoryPlanLease(blocking_timeout=lease_config.blocking_timeout_seconds)

    engine = PlanExecutionEngine(
        store=store,
        scheduler=scheduler,
        executor=executor,
        config=settings.engine,
        lease=lease,
    )
    service = PlanningService(store, scheduler)

    logger.info(
        "planning_runtime_built",
        store_backend=settings.storage.backend,
        queue_backend=settings.queue.backend,
        lease_backend=lease_config.backend if lease_config.enabled else None,
        executor=executor.executor_name,
    )

    return PlanningRuntime(
        settings=settings,
        store=store,
        scheduler=scheduler,
        lease=lease,
        engine=engine,
        service=service,
        tools=PlanningTools(service),
        worker=PlanQueueWorker(scheduler, engine, settings.queue),
        redis_clients=clients.owned,
    )
