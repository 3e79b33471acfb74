"""
Worker Entry Point
==================
Wires the shared clients into a BuildConsumer and runs it in the
foreground, without the status API:

    python -m build_worker.worker
"""
import logging
import signal
import sys

from build_worker.core.config import LOG_LEVEL, validate_config
from build_worker.executor.build_executor import BuildExecutor
from build_worker.executor.container_runtime import ContainerRuntime
from build_worker.intake.consumer import BuildConsumer
from build_worker.services.artifact_publisher import ArtifactPublisher
from build_worker.services.clients import get_s3_client, get_sqs_client
from build_worker.services.log_store import default_log_store
from build_worker.services.queue_client import SQSQueueClient
from build_worker.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_consumer() -> BuildConsumer:
    """Build a consumer over the process-wide queue, storage and database handles."""
    executor = BuildExecutor(
        runtime=ContainerRuntime(),
        publisher=ArtifactPublisher(s3_client=get_s3_client()),
        log_store=default_log_store(),
    )
    return BuildConsumer(SQSQueueClient(sqs_client=get_sqs_client()), executor)


def main() -> int:
    setup_logging(level=getattr(logging, LOG_LEVEL, logging.INFO))

    missing = validate_config()
    if missing:
        logger.error("Missing required configuration: %s", ", ".join(missing))
        return 1

    consumer = create_consumer()
    signal.signal(signal.SIGTERM, lambda *_: consumer.stop())

    try:
        consumer.run_forever()
    except KeyboardInterrupt:
        logger.info("Worker shutting down...")
        consumer.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
