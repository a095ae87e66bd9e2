import re

from yarl import URL

TRACKING_PARAMS = {"fbclid", "gclid", "mc_eid", "msclkid", "ref", "ref_src", "ref_url"}
TRACKING_PREFIX = re.compile(r"^utm_\w+$", re.IGNORECASE)

DEFAULT_PORTS = {"http": 80, "https": 443}


def _is_tracking(key: str) -> bool:
    return key.lower() in TRACKING_PARAMS or bool(TRACKING_PREFIX.match(key))


def canonicalize_url(url: str) -> str:
    """
    Normalize a submitted link so the same page saved twice maps to one post.

    Lowercases scheme and host, drops default ports and the fragment, strips
    tracking parameters and sorts what is left of the query string. IPv6
    hosts keep their brackets and userinfo is carried over as given.
    """
    if not url or not url.strip():
        raise ValueError("url is required")

    raw = url.strip()
    if "://" not in raw:
        raw = "http://" + raw

    parsed = URL(raw)
    scheme = parsed.scheme.lower()
    if scheme not in DEFAULT_PORTS:
        raise ValueError(f"unsupported url scheme: {parsed.scheme}")
    if not parsed.host:
        raise ValueError(f"url has no host: {url}")

    port = parsed.port
    if port == DEFAULT_PORTS[scheme]:
        port = None

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path.rstrip("/") or "/"

    query = sorted((k, v) for k, v in parsed.query.items() if not _is_tracking(k))

    canonical = URL.build(
        scheme=scheme,
        user=parsed.user,
        password=parsed.password,
        host=parsed.host.lower(),
        port=port,
        path=path,
        query=query or None,
    )
    return str(canonical)
