"""Constants for blobmesh."""

# Settings directory and file (under the user's home directory)
BLOBMESH_DIR = ".blobmesh"
CONFIG_FILE = "config.yaml"

# Authorization
AUTH_SCHEME = "Nostr"
AUTH_EVENT_KIND = 24242
TOKEN_LIFETIME_SECONDS = 300
TOKEN_SAFETY_MARGIN_SECONDS = 30
TOKEN_SWEEP_INTERVAL_SECONDS = 60

# Request coalescing
COALESCE_TTL_SECONDS = 30

# HTTP
REASON_HEADER = "X-Reason"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
REQUEST_TIMEOUT_SECONDS = 30.0
CONNECT_TIMEOUT_SECONDS = 10.0

# Statuses meaning "this endpoint does not implement PUT /mirror"
MIRROR_UNSUPPORTED_STATUSES = frozenset({404, 405, 501})

# Version
BLOBMESH_VERSION = "0.1.0"
