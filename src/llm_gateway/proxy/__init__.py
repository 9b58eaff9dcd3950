"""
Couche proxy: client amont, relais SSE, retry et pool de chunks.
"""

from .client import UpstreamClient, create_upstream_client
from .pool import ChunkPool, create_chunk_pool, get_chunk_pool
from .retry import with_429_retry, stream_with_429_retry, safe_retry_count
from .stream import (
    STREAMING_ERROR_TYPES,
    Heartbeat,
    relay_with_heartbeat,
    sse_data,
    sse_event,
    iter_sse_data,
    parse_sse_json,
    classify_stream_error,
)

__all__ = [
    "UpstreamClient",
    "create_upstream_client",
    "ChunkPool",
    "create_chunk_pool",
    "get_chunk_pool",
    "with_429_retry",
    "stream_with_429_retry",
    "safe_retry_count",
    "STREAMING_ERROR_TYPES",
    "Heartbeat",
    "relay_with_heartbeat",
    "sse_data",
    "sse_event",
    "iter_sse_data",
    "parse_sse_json",
    "classify_stream_error",
]
