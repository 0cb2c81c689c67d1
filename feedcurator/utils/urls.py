from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAMS = ('ref', 'source')


def normalize_url(raw_url):
    """
    Normalize a URL for deduplication:
    - drop utm_* and other tracking params
    - lowercase the hostname
    - drop a trailing slash unless the path is just '/'
    Unparseable input is returned unchanged.
    """
    try:
        parts = urlsplit(raw_url.strip())
    except (AttributeError, ValueError):
        return raw_url
    if not parts.scheme or not parts.netloc:
        return raw_url

    query = [
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if not k.startswith('utm_') and k not in TRACKING_PARAMS
    ]
    path = parts.path
    if path.endswith('/') and path != '/' and not query:
        path = path.rstrip('/')

    return urlunsplit((parts.scheme, parts.netloc.lower(), path, urlencode(query), parts.fragment))
