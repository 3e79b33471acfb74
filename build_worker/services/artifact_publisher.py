"""
Artifact Publisher
==================
Uploads a build output directory to object storage under a job-scoped
key prefix.

Upload policy:
    - One object per regular file; key = ``<prefix>/<relative/path>``
      with forward slashes regardless of host separators.
    - Content-Type guessed from the extension, octet-stream when unknown.
    - ``.html`` files get ``no-cache``; everything else is fingerprinted
      build output and gets a one-year immutable cache directive.

Concurrency:
    Files are uploaded in fixed-size batches. A batch's uploads run in
    parallel and the whole batch finishes before the next one starts, so
    at most ``concurrency`` transfers are ever in flight.

Failure:
    Any failed upload fails its batch and raises PublishError once the
    batch has settled. Objects from earlier batches stay in place:
    publishing is not atomic, and re-publishing the same job overwrites
    the same keys.
"""
import logging
import mimetypes
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from build_worker.core.config import ARTIFACT_BUCKET, UPLOAD_CONCURRENCY
from build_worker.core.constants import (
    ASSET_CACHE_CONTROL,
    DEFAULT_CONTENT_TYPE,
    HTML_CACHE_CONTROL,
)
from build_worker.core.errors import PublishError
from build_worker.services.clients import get_s3_client
from build_worker.utils.path_utils import join_key, list_files, relative_posix_path

logger = logging.getLogger(__name__)


def build_object_key(file_path: str, base_dir: str, key_prefix: str) -> str:
    """Storage key for ``file_path`` under ``key_prefix``."""
    return join_key(key_prefix, relative_posix_path(file_path, base_dir))


def resolve_content_type(file_path: str) -> str:
    content_type, _ = mimetypes.guess_type(file_path)
    return content_type or DEFAULT_CONTENT_TYPE


def resolve_cache_control(file_path: str) -> str:
    return HTML_CACHE_CONTROL if file_path.endswith(".html") else ASSET_CACHE_CONTROL


class ArtifactPublisher:
    """Batch uploader bound to a shared S3 client."""

    def __init__(
        self,
        s3_client=None,
        bucket: str = ARTIFACT_BUCKET,
        concurrency: int = UPLOAD_CONCURRENCY,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._s3_client = s3_client
        self.bucket = bucket
        self.concurrency = concurrency

    @property
    def s3(self):
        if self._s3_client is None:
            self._s3_client = get_s3_client()
        return self._s3_client

    def publish(self, local_dir: str, key_prefix: str,
                bucket: Optional[str] = None) -> list[str]:
        """
        Upload every file under ``local_dir``.

        Returns
        -------
        list[str]
            Keys written, in upload-completion order.

        Raises
        ------
        PublishError
            First failing upload of the first failing batch.
        """
        bucket = bucket or self.bucket
        if not bucket:
            raise PublishError("No artifact bucket configured")

        files = list_files(local_dir)
        if not files:
            logger.warning("Nothing to publish in %s", local_dir)
            return []

        batches = [files[i:i + self.concurrency] for i in range(0, len(files), self.concurrency)]
        logger.info(
            "Publishing %d files to s3://%s/%s/ in %d batches",
            len(files), bucket, key_prefix, len(batches),
        )

        uploaded: list[str] = []
        with ThreadPoolExecutor(max_workers=self.concurrency,
                                thread_name_prefix="artifact-upload") as pool:
            for index, batch in enumerate(batches, 1):
                futures = [
                    pool.submit(self._upload_file, path, local_dir, key_prefix, bucket)
                    for path in batch
                ]
                failure: Optional[PublishError] = None
                for future in as_completed(futures):
                    try:
                        uploaded.append(future.result())
                    except PublishError as e:
                        logger.error("Batch %d/%d: %s", index, len(batches), e)
                        failure = failure or e
                if failure is not None:
                    raise failure
                logger.debug("Batch %d/%d uploaded (%d files)", index, len(batches), len(batch))

        logger.info("Published %d files under %s/", len(uploaded), key_prefix)
        return uploaded

    def _upload_file(self, file_path: str, base_dir: str,
                     key_prefix: str, bucket: str) -> str:
        key = build_object_key(file_path, base_dir, key_prefix)
        try:
            with open(file_path, "rb") as body:
                self.s3.put_object(
                    Bucket=bucket,
                    Key=key,
                    Body=body,
                    ContentType=resolve_content_type(file_path),
                    CacheControl=resolve_cache_control(file_path),
                )
        except (ClientError, BotoCoreError, OSError) as e:
            raise PublishError(f"Upload of {key} failed: {e}", key=key) from e
        return key
