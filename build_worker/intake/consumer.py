"""
Build Consumer
==============
The job intake loop: long-poll the queue, decode one BuildJob, hand it to
the executor, acknowledge the message, repeat.

Guarantees:
    - One job at a time per process. Scale out by running more workers;
      the queue's visibility timeout keeps a message with one worker.
    - Every received message is acknowledged exactly once, after handling,
      whatever the outcome. A malformed message can never succeed, so it
      is logged and deleted too.
    - Nothing short of process shutdown (or ``stop()``) ends the loop:
      receive errors, and any unexpected error in a cycle, are logged and
      treated as an empty poll.
"""
import logging
import threading
from typing import Literal, Optional

from botocore.exceptions import BotoCoreError, ClientError

from build_worker.core.config import POLL_INTERVAL_SECONDS
from build_worker.core.errors import MalformedJobError
from build_worker.executor.build_executor import BuildExecutor
from build_worker.models.build_job import BuildJob
from build_worker.services.queue_client import QueueMessage, SQSQueueClient

logger = logging.getLogger(__name__)

ConsumerState = Literal["idle", "polling", "processing", "stopped"]


class BuildConsumer:
    def __init__(
        self,
        queue: SQSQueueClient,
        executor: BuildExecutor,
        poll_interval_seconds: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self.queue = queue
        self.executor = executor
        self.poll_interval_seconds = poll_interval_seconds

        self.state: ConsumerState = "idle"
        self.current_job_id: Optional[str] = None
        self.stats = {
            "jobs_succeeded": 0,
            "jobs_failed": 0,
            "messages_malformed": 0,
            "receive_errors": 0,
            "ack_errors": 0,
            "loop_errors": 0,
        }
        self._stop_event = threading.Event()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def run_forever(self) -> None:
        logger.info("[sqs] Polling queue: %s", self.queue.queue_url)
        while not self._stop_event.is_set():
            try:
                handled = self.run_once()
            except Exception:
                # Last resort: a single bad cycle must not end the loop
                self.stats["loop_errors"] += 1
                self.state = "idle"
                logger.exception("[sqs] Unexpected error in poll cycle")
                handled = False
            if not handled:
                # Event.wait doubles as an interruptible sleep
                self._stop_event.wait(self.poll_interval_seconds)
        self.state = "stopped"
        logger.info("[sqs] Consumer stopped")

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        self._stop_event.set()

    def run_once(self) -> bool:
        """
        One poll cycle. Returns True if a message was received (and handled),
        False if the poll came back empty.
        """
        self.state = "polling"
        message = self.poll_message()
        if message is None:
            self.state = "idle"
            return False

        self.state = "processing"
        try:
            self.process_message(message)
        finally:
            self.acknowledge_message(message)
            self.current_job_id = None
            self.state = "idle"
        return True

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------
    def poll_message(self) -> Optional[QueueMessage]:
        try:
            return self.queue.receive_one()
        except (ClientError, BotoCoreError) as e:
            self.stats["receive_errors"] += 1
            logger.error("[sqs] Error receiving message: %s", e)
            return None

    def process_message(self, message: QueueMessage) -> None:
        try:
            job = parse_job_from_message(message)
        except MalformedJobError as e:
            self.stats["messages_malformed"] += 1
            logger.error("[sqs] Dropping malformed message: %s", e)
            return

        self.current_job_id = job.key_prefix
        logger.info("[sqs] Processing build job %s (%s)", job.key_prefix, job.repo_name)
        try:
            outcome = self.executor.execute(job)
        except Exception:
            self.stats["jobs_failed"] += 1
            logger.exception("[sqs] Executor crashed on build job %s", job.key_prefix)
            return

        if outcome.success:
            self.stats["jobs_succeeded"] += 1
            logger.info("[sqs] Build job %s completed successfully", job.key_prefix)
        else:
            self.stats["jobs_failed"] += 1
            logger.error(
                "[sqs] Build job %s failed at %s: %s",
                job.key_prefix, outcome.failed_step, outcome.error,
            )

    def acknowledge_message(self, message: QueueMessage) -> None:
        try:
            self.queue.delete(message.receipt_handle)
        except (ClientError, BotoCoreError) as e:
            # The message reappears after its visibility timeout
            self.stats["ack_errors"] += 1
            logger.error("[sqs] Failed to acknowledge message %s: %s", message.message_id, e)
            return
        logger.info("[sqs] Message %s acknowledged", message.message_id)

    def get_stats(self) -> dict:
        return {
            "state": self.state,
            "current_job_id": self.current_job_id,
            **self.stats,
        }


def parse_job_from_message(message: QueueMessage) -> BuildJob:
    """Decode a queue message into a BuildJob, raising MalformedJobError."""
    return BuildJob.from_message_body(message.body, message.message_id)
