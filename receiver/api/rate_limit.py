"""
Client identification for rate limiting.

Requests are keyed by client address before authentication, so callers
without a valid key are bounded too.
"""

from starlette.requests import Request

from receiver.config.settings import get_settings


def get_client_identifier(request: Request) -> str:
    """Extract the client address: first X-Forwarded-For hop, or the peer IP.

    X-Forwarded-For is only honoured when TRUST_FORWARDED_FOR is set,
    i.e. when the service sits behind a proxy that overwrites it.
    """
    if get_settings().trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
