"""
Queue Client
============
Thin SQS wrapper: receive at most one build message, delete it once handled.
Transport errors propagate; the intake loop decides what they mean.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from build_worker.core.config import POLL_WAIT_SECONDS, SQS_QUEUE_URL, VISIBILITY_TIMEOUT
from build_worker.services.clients import get_sqs_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueMessage:
    message_id: str
    receipt_handle: str
    body: Optional[str]


class SQSQueueClient:
    def __init__(
        self,
        sqs_client=None,
        queue_url: str = SQS_QUEUE_URL,
        wait_seconds: int = POLL_WAIT_SECONDS,
        visibility_timeout: int = VISIBILITY_TIMEOUT,
    ) -> None:
        self._sqs_client = sqs_client
        self.queue_url = queue_url
        self.wait_seconds = wait_seconds
        self.visibility_timeout = visibility_timeout

    @property
    def sqs(self):
        if self._sqs_client is None:
            self._sqs_client = get_sqs_client()
        return self._sqs_client

    def receive_one(self) -> Optional[QueueMessage]:
        """Long-poll for a single message; None when the wait elapses empty."""
        response = self.sqs.receive_message(
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=1,
            WaitTimeSeconds=self.wait_seconds,
            VisibilityTimeout=self.visibility_timeout,
        )
        messages = response.get("Messages") or []
        if not messages:
            return None
        raw = messages[0]
        return QueueMessage(
            message_id=raw.get("MessageId", ""),
            receipt_handle=raw["ReceiptHandle"],
            body=raw.get("Body"),
        )

    def delete(self, receipt_handle: str) -> None:
        self.sqs.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
