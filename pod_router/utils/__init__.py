from typing import Optional


def extract_pod_id(path: Optional[str]) -> Optional[str]:
    """Return the first non-empty path segment, the routing key of a request."""
    pathname = (path or "").split("?", 1)[0]
    for segment in pathname.split("/"):
        if segment:
            return segment
    return None


def elapsed_ms(start: float, now: float) -> int:
    return int((now - start) * 1000)


def raw_path_with_query(scope) -> str:
    """Path and query exactly as the client sent them, percent-escapes intact."""
    raw_path = scope.get("raw_path")
    if raw_path:
        path = raw_path.split(b"?", 1)[0].decode("latin-1")
    else:
        path = scope.get("path") or "/"
    query_string = scope.get("query_string", b"").decode("latin-1")
    if query_string:
        path = f"{path}?{query_string}"
    return path
