"""
Constants for the capstan harness.
"""

# Default timeout for engine requests and container startup (in seconds)
DEFAULT_TIMEOUT = 10

# Image pulls can take a while on a cold cache
DEFAULT_PULL_TIMEOUT = 300

# Engine socket used when nothing else is configured
DEFAULT_SOCKET_PATH = "/var/run/docker.sock"

# Registry prefix prepended to bare logical image names
DEFAULT_REGISTRY = "ghcr.io/aedot"

# Tag used when neither the name nor any override carries one
DEFAULT_TAG = "rolling"

# Host that published container ports are reachable on
DEFAULT_HTTP_HOST = "localhost"

# Interval between readiness polls (in seconds)
DEFAULT_POLL_INTERVAL = 0.5

# Wait before inspecting startup logs (in seconds)
DEFAULT_SETTLE_DELAY = 5.0

# Deadline for HTTP readiness polling (in seconds)
DEFAULT_HTTP_TIMEOUT = 30.0

# Multiplexed stream header: [STREAM_TYPE, 0, 0, 0, SIZE (4 bytes big endian)]
STREAM_HEADER_SIZE = 8
STREAM_STDOUT = 1
STREAM_STDERR = 2

# How long to wait for the engine to record an exec's exit code (in seconds)
EXEC_SETTLE_TIMEOUT = 2.0
