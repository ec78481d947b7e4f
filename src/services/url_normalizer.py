"""Canonical URL keys for per-user bookmark deduplication."""
from urllib.parse import parse_qsl, urlencode, urlsplit

TRACKING_PARAMS = frozenset({"fbclid", "gclid", "ref"})
TRACKING_PREFIXES = ("utm_",)


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def normalize_url(url: str) -> str:
    """
    Normalize a URL into the key used to detect duplicate bookmarks.

    Rules, in order:
    1. Lowercase the host and strip a leading ``www.``
    2. Drop tracking query parameters (``utm_*``, ``fbclid``, ``gclid``, ``ref``)
    3. Strip a single trailing slash from the path (the root path ``/`` is kept)
    4. Reassemble ``scheme://host[:port]path?query#fragment``

    Never raises: input that cannot be parsed as an absolute URL falls back to a
    lowercased, trimmed copy of the raw string.

    Args:
        url: The URL as submitted by the user.

    Returns:
        The normalized dedup key.
    """
    raw = url.strip()
    try:
        parts = urlsplit(raw)
        hostname = parts.hostname
        port = parts.port  # ValueError on a malformed port
    except ValueError:
        return raw.lower()

    if not parts.scheme or not hostname:
        return raw.lower()

    host = hostname.lower()
    if host.startswith("www."):
        host = host[4:]
    if ":" in host:
        # IPv6 literal
        host = f"[{host}]"
    netloc = f"{host}:{port}" if port is not None else host

    path = parts.path
    if path.endswith("/") and len(path) > 1:
        path = path[:-1]

    query_pairs = [
        (name, value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(name)
    ]
    query = f"?{urlencode(query_pairs)}" if query_pairs else ""
    fragment = f"#{parts.fragment}" if parts.fragment else ""

    return f"{parts.scheme.lower()}://{netloc}{path}{query}{fragment}"
