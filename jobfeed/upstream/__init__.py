"""
Upstream catalog API access: envelope parsing and the retrying client.
"""
from .envelope import ErrorEnvelope, SuccessEnvelope, parse_envelope, unwrap
from .client import BatchFetchResult, UpstreamClient

__all__ = [
    # Envelopes
    "ErrorEnvelope",
    "SuccessEnvelope",
    "parse_envelope",
    "unwrap",
    # Client
    "BatchFetchResult",
    "UpstreamClient",
]
