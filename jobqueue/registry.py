"""
Connection and queue registry.

``QueueSystem`` owns the shared store client, the queue configuration and
handles, the in-process workers, the handler registry and the metrics
recorder. Every producer and admin operation reaches the store through it.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from redis.asyncio import Redis

from jobqueue.config import Settings, get_settings
from jobqueue.constants import QueueName
from jobqueue.exceptions import QueueUnavailableError
from jobqueue.observability.metrics import MetricsRecorder, get_metrics
from jobqueue.queue import QueueHandle, build_default_configs
from jobqueue.store.connection import close_client, create_client
from jobqueue.store.repository import JobRepository
from jobqueue.store.scripts import QueueScripts
from jobqueue.types.api import HealthStatus
from jobqueue.types.job import QueueConfig, default_job_options
from jobqueue.worker.registry import HandlerRegistry

if TYPE_CHECKING:
    from jobqueue.scheduler.cron import CronScheduler
    from jobqueue.worker.main import Worker

logger = logging.getLogger(__name__)


class QueueSystem:
    """
    Process-wide queue system.

    The store connection is created lazily on first use. When no connection
    string is configured (or the queue system is disabled) the system is
    "unavailable": ``get_queue`` returns None and the condition is logged once.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: Redis | None = None,
        metrics: MetricsRecorder | None = None,
    ):
        """
        Initialize the queue system.

        Args:
            settings: Application settings; defaults to the cached settings.
            client: Pre-built store client. When given, the caller owns it.
            metrics: Metrics recorder; defaults to the process-wide recorder.
        """
        self.settings = settings or get_settings()
        self.metrics = metrics or get_metrics()
        self.handlers = HandlerRegistry()

        self._client = client
        self._owns_client = client is None
        self._scripts: QueueScripts | None = None

        self._configs: dict[str, QueueConfig] = build_default_configs(
            self.settings.default_max_attempts,
            self.settings.default_backoff_delay_ms,
        )
        self._queues: dict[str, QueueHandle] = {}
        self._workers: dict[str, "Worker"] = {}
        self._scheduler: "CronScheduler | None" = None

        self._unavailable_logged = False
        self._closed = False
        self._close_lock = asyncio.Lock()

    @property
    def available(self) -> bool:
        """True when a store is configured and the system is not shut down."""
        if self._closed or not self.settings.queue_enabled:
            return False
        return self._client is not None or self.settings.redis_url_for_queues is not None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def client(self) -> Redis:
        """The shared store client, created on first use."""
        if self._client is None:
            url = self.settings.redis_url_for_queues
            if url is None:
                raise QueueUnavailableError()
            self._client = create_client(url)
        return self._client

    @property
    def scripts(self) -> QueueScripts:
        if self._scripts is None:
            self._scripts = QueueScripts(self.client)
        return self._scripts

    @property
    def key_prefix(self) -> str:
        return self.settings.queue_key_prefix

    @property
    def queue_names(self) -> list[str]:
        """Names of the queues opened in this process."""
        return list(self._queues)

    @property
    def worker_names(self) -> list[str]:
        return list(self._workers)

    @property
    def workers(self) -> list["Worker"]:
        return list(self._workers.values())

    @property
    def scheduler(self) -> "CronScheduler | None":
        return self._scheduler

    def _log_unavailable(self) -> None:
        if self._unavailable_logged:
            return
        self._unavailable_logged = True
        if self._closed:
            logger.warning("Queue system is shut down")
        else:
            logger.warning("No Redis URL configured, queue system disabled")

    def register_queue(self, config: QueueConfig) -> None:
        """Add or replace the configuration of a queue. Open handles keep the old one."""
        self._configs[config.name] = config
        logger.info("Queue registered", extra={"queue": config.name})

    def get_queue_config(self, name: str) -> QueueConfig:
        """Configuration of a queue; unknown names get the queue defaults."""
        config = self._configs.get(name)
        if config is None:
            config = QueueConfig(
                name=name,
                default_job_options=default_job_options(
                    self.settings.default_max_attempts,
                    self.settings.default_backoff_delay_ms,
                ),
            )
            self._configs[name] = config
        return config

    def get_queue(self, name: str | QueueName) -> QueueHandle | None:
        """
        Get the handle of a named queue.

        Args:
            name: Queue name.

        Returns:
            The queue handle, or None when the queue system is unavailable.
        """
        if not self.available:
            self._log_unavailable()
            return None

        name = str(name)
        handle = self._queues.get(name)
        if handle is None:
            repository = JobRepository(
                self.client, name, self.key_prefix, scripts=self.scripts
            )
            handle = QueueHandle(self.get_queue_config(name), repository)
            self._queues[name] = handle
            logger.info("Queue created", extra={"queue": name})
        return handle

    def require_queue(self, name: str | QueueName) -> QueueHandle:
        """
        Get a queue handle or raise when the system is unavailable.

        Raises:
            QueueUnavailableError: If no store is configured.
        """
        handle = self.get_queue(name)
        if handle is None:
            raise QueueUnavailableError()
        return handle

    def is_known_queue(self, name: str) -> bool:
        """True for configured queues and queues opened in this process."""
        return name in self._configs or name in self._queues

    def create_worker(
        self,
        name: str | QueueName,
        concurrency: int | None = None,
    ) -> "Worker | None":
        """
        Create the worker of a queue. Returns the existing one if already created.

        Args:
            name: Queue name.
            concurrency: Max simultaneously active jobs in this process.

        Returns:
            The worker, or None when the queue system is unavailable.
        """
        from jobqueue.worker.main import Worker

        queue = self.get_queue(name)
        if queue is None:
            return None

        existing = self._workers.get(queue.name)
        if existing is not None:
            logger.warning(
                "Worker already exists, returning existing", extra={"queue": queue.name}
            )
            return existing

        worker_concurrency = (
            concurrency or queue.config.concurrency or self.settings.queue_concurrency
        )
        worker = Worker(self, queue, concurrency=worker_concurrency)
        self._workers[queue.name] = worker
        logger.info(
            "Worker created",
            extra={"queue": queue.name, "concurrency": worker_concurrency},
        )
        return worker

    def attach_scheduler(self, scheduler: "CronScheduler") -> None:
        """Register the scheduler so shutdown stops it after the workers."""
        self._scheduler = scheduler

    async def check_health(self) -> HealthStatus:
        """
        Check store liveness with a job-counts round-trip on the email queue.

        Returns:
            HealthStatus: never raises.
        """
        if not self.available:
            return HealthStatus(connected=False)
        try:
            queue = self.require_queue(QueueName.EMAIL)
            await queue.get_job_counts()
            return HealthStatus(
                connected=True,
                queue_names=self.queue_names,
                worker_names=self.worker_names,
            )
        except Exception as e:
            logger.warning("Queue health check failed", extra={"error": str(e)})
            return HealthStatus(
                connected=False,
                queue_names=self.queue_names,
                worker_names=self.worker_names,
                error=str(e),
            )

    async def disconnect_all(self) -> None:
        """
        Shut down the queue system.

        Order: workers (no new jobs start), scheduler, queue handles, then
        the shared connection. Idempotent and safe to schedule from a
        signal handler; a failing component does not stop the rest.
        """
        async with self._close_lock:
            if self._closed:
                return
            self._closed = True
            logger.info("Disconnecting queue system...")

            for name, worker in list(self._workers.items()):
                try:
                    await worker.close()
                    logger.debug("Worker closed", extra={"worker": name})
                except Exception:
                    logger.exception("Error closing worker", extra={"worker": name})
            self._workers.clear()

            if self._scheduler is not None:
                try:
                    await self._scheduler.stop()
                except Exception:
                    logger.exception("Error stopping scheduler")

            for name, queue in list(self._queues.items()):
                try:
                    await queue.close()
                except Exception:
                    logger.exception("Error closing queue", extra={"queue": name})
            self._queues.clear()

            if self._client is not None and self._owns_client:
                try:
                    await close_client(self._client)
                except Exception:
                    logger.exception("Error closing store connection")
            self._client = None
            self._scripts = None

            logger.info("Queue system disconnected")


_system: QueueSystem | None = None


def get_queue_system() -> QueueSystem:
    """
    Get the process-wide queue system, creating it on first use.

    Components accept a QueueSystem explicitly; this is a convenience for
    entry points.
    """
    global _system
    if _system is None:
        _system = QueueSystem()
    return _system
