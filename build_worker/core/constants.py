"""
Constants
Centralised storage for container labels, step names and upload policy.
"""
CONTAINER_NAME_PREFIX = "build-"
CONTAINER_KEEPALIVE_COMMAND = ["sleep", "infinity"]
CONTAINER_LABELS = {"project": "build-worker", "role": "build"}
NO_NEW_PRIVILEGES = "no-new-privileges"

# Executor steps, in execution order
STEP_PROVISION = "provision"
STEP_CLONE = "clone"
STEP_INSTALL = "install"
STEP_BUILD = "build"
STEP_EXTRACT = "extract"
STEP_PUBLISH = "publish"

DEFAULT_CONTENT_TYPE = "application/octet-stream"
HTML_CACHE_CONTROL = "no-cache"
ASSET_CACHE_CONTROL = "max-age=31536000, immutable"

BUILD_OUTPUT_LOGGER = "build_worker.build_output"
