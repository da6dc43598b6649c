"""
Topic-based job queue on top of Celery.

Each topic is a Celery queue with one registered task. Handlers are plain
callables taking a ``QueuedJob``; the queue owns retries, backoff and the
terminal "archived as failed" outcome, so handlers only ever see the job
they are asked to run.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from celery import Celery, Task

from app.config import Settings
from app.tasks.celery_app import DEFAULT_PRIORITY

HIGH_PRIORITY = 0

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueuedJob:
    """A delivered job as seen by a handler."""

    id: str
    topic: str
    data: dict
    attempt: int = 1
    retry_limit: int = 0

    @property
    def is_final_attempt(self) -> bool:
        """True when a failure now will archive the job instead of retrying it."""
        return self.attempt > self.retry_limit


@dataclass(frozen=True)
class WorkerSpec:
    """How many parallel consumers a topic gets."""

    topic: str
    task_name: str
    team_size: int = 1
    team_concurrency: int = 1

    @property
    def concurrency(self) -> int:
        return self.team_size * self.team_concurrency


Handler = Callable[[QueuedJob], Any]
FailureCallback = Callable[[QueuedJob, BaseException], None]


class QueueTask(Task):
    """Celery task base that reports terminal failures to the registering code."""

    topic: Optional[str] = None
    failure_callback: Optional[FailureCallback] = None

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"❌ Job {task_id} on topic {self.topic} archived as failed: {exc}")
        if self.failure_callback is None:
            return
        payload = args[0] if args else kwargs.get("payload", {})
        job = QueuedJob(
            id=task_id,
            topic=self.topic,
            data=payload,
            attempt=self.request.retries + 1,
            retry_limit=self.max_retries or 0,
        )
        try:
            self.failure_callback(job, exc)
        except Exception:
            logger.exception(f"💥 Failure callback for job {task_id} raised")


@dataclass
class JobQueue:
    """
    Durable job queue with named topics.

    Constructed explicitly and handed to whoever sends or works jobs; nothing
    here is a module-level singleton.

    Args:
        celery_app: Celery app whose broker persists the jobs
        settings: Retry limit, backoff and retention configuration
    """

    celery_app: Celery
    settings: Settings
    workers: dict[str, WorkerSpec] = field(default_factory=dict)
    _running: bool = False

    @staticmethod
    def task_name(topic: str) -> str:
        return f"pipeline.{topic}"

    def send(self, topic: str, payload: dict, priority: Optional[int] = None) -> str:
        """
        Enqueue a job on ``topic``.

        Args:
            topic: Queue name
            payload: JSON-serializable job data
            priority: 0 (most urgent) to 9; defaults to DEFAULT_PRIORITY

        Returns:
            The job id
        """
        result = self.celery_app.send_task(
            self.task_name(topic),
            args=[payload],
            queue=topic,
            priority=DEFAULT_PRIORITY if priority is None else priority,
        )
        logger.debug(f"📨 Sent job {result.id} to {topic} (priority={priority})")
        return result.id

    def work(
        self,
        topic: str,
        handler: Handler,
        team_size: int = 1,
        team_concurrency: int = 1,
        on_failure: Optional[FailureCallback] = None,
        fatal_errors: tuple[type[BaseException], ...] = (),
    ) -> Task:
        """
        Register ``handler`` as the consumer of ``topic``.

        A handler that raises is retried up to ``queue_retry_limit`` times
        with exponential backoff; exceptions listed in ``fatal_errors`` skip
        the retries. When a job is finally given up on, ``on_failure`` runs
        once with the job and the last exception.
        """
        retry_limit = self.settings.queue_retry_limit
        name = self.task_name(topic)

        def run(task: Task, payload: dict) -> Any:
            job = QueuedJob(
                id=task.request.id,
                topic=topic,
                data=payload,
                attempt=task.request.retries + 1,
                retry_limit=retry_limit,
            )
            return handler(job)

        run.__name__ = name.replace(".", "_").replace("-", "_")
        options: dict[str, Any] = {
            "name": name,
            "shared": False,
            "bind": True,
            "base": QueueTask,
            "queue": topic,
            "topic": topic,
            "autoretry_for": (Exception,),
            "dont_autoretry_for": tuple(fatal_errors),
            "max_retries": retry_limit,
            "retry_backoff": self.settings.queue_retry_delay,
            "retry_backoff_max": self.settings.queue_retry_backoff_max,
            "retry_jitter": False,
        }
        if on_failure is not None:
            options["failure_callback"] = staticmethod(on_failure)

        task = self.celery_app.task(**options)(run)
        self.workers[topic] = WorkerSpec(
            topic=topic,
            task_name=name,
            team_size=team_size,
            team_concurrency=team_concurrency,
        )
        self._running = True
        logger.info(
            f"👷 Registered worker for {topic}: team_size={team_size}, "
            f"team_concurrency={team_concurrency}"
        )
        return task

    def worker_argv(self, topic: str, loglevel: str = "INFO") -> list[str]:
        """Command line for a Celery worker that consumes only ``topic``."""
        spec = self.workers.get(topic)
        if spec is None:
            raise KeyError(f"No worker registered for topic {topic!r}")
        return [
            "worker",
            "--queues",
            topic,
            "--concurrency",
            str(spec.concurrency),
            "--hostname",
            f"{topic}@%h",
            "--loglevel",
            loglevel,
        ]

    def run_worker(self, topic: str) -> None:
        """Block running a worker for ``topic`` in this process."""
        self.celery_app.worker_main(self.worker_argv(topic))

    def stop(self, graceful: bool = True) -> None:
        """
        Shut the workers down.

        Graceful shutdown lets running jobs finish; otherwise running jobs of
        our topics are revoked and terminated first.
        """
        if not self._running:
            return

        control = self.celery_app.control
        if not graceful:
            names = {spec.task_name for spec in self.workers.values()}
            active = control.inspect().active() or {}
            for tasks in active.values():
                for task in tasks:
                    if task.get("name") in names:
                        control.revoke(task["id"], terminate=True)
        control.shutdown()
        self._running = False
        logger.info(f"🛑 Job queue workers stopped (graceful={graceful})")

    def status(self) -> dict:
        """Registered topics and their worker settings."""
        return {
            "is_running": self._running,
            "queues": {
                topic: {
                    "task": spec.task_name,
                    "team_size": spec.team_size,
                    "team_concurrency": spec.team_concurrency,
                }
                for topic, spec in self.workers.items()
            },
        }
