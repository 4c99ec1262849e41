"""Cursor extraction from Graph @odata.nextLink and @odata.deltaLink URLs."""

from urllib.parse import parse_qs, quote, urlparse

# Query parameter carrying the page cursor on list endpoints.
SKIP_TOKEN_PARAM = "$skiptoken"
# Query parameter carrying the cursor on delta endpoints (both link kinds).
DELTA_TOKEN_PARAM = "token"


def extract_cursor(link: str | None, param: str = DELTA_TOKEN_PARAM) -> str | None:
    """Extract the cursor query parameter from a next or delta link.

    Args:
        link: Full link URL as returned by Graph, or None when absent.
        param: Name of the query parameter carrying the cursor.

    Returns:
        The decoded parameter value, or None if the link is absent, malformed
        or does not carry the parameter.
    """
    if not isinstance(link, str) or not link:
        return None
    try:
        query = urlparse(link).query
    except ValueError:
        return None
    values = parse_qs(query).get(param, [])
    return values[0] if values and values[0] else None


def with_cursor(url: str, cursor: str | None, param: str = DELTA_TOKEN_PARAM) -> str:
    """Append a cursor query parameter to a URL or path.

    Args:
        url: URL or path, with or without an existing query string.
        cursor: Cursor to append; the URL is returned unchanged when None.
        param: Name of the query parameter carrying the cursor.
    """
    if not cursor:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{param}={quote(cursor, safe='')}"
