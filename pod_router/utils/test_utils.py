import pytest

from pod_router.utils import elapsed_ms, extract_pod_id, raw_path_with_query


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/alpha", "alpha"),
        ("/alpha/", "alpha"),
        ("/beta/matchmake/joinOrCreate", "beta"),
        ("//gamma/x", "gamma"),
        ("/delta?room=1", "delta"),
        ("/", None),
        ("", None),
        ("///", None),
        (None, None),
    ],
)
def test_extract_pod_id(path, expected):
    assert extract_pod_id(path) == expected


def test_elapsed_ms():
    assert elapsed_ms(10.0, 10.25) == 250


@pytest.mark.parametrize(
    "scope, expected",
    [
        ({"path": "/alpha/a?b/c", "raw_path": b"/alpha/a%3Fb%2Fc", "query_string": b"x=1"}, "/alpha/a%3Fb%2Fc?x=1"),
        ({"path": "/alpha", "raw_path": b"/alpha?stale=1", "query_string": b""}, "/alpha"),
        ({"path": "/alpha/room", "query_string": b"id=%20"}, "/alpha/room?id=%20"),
        ({"path": "", "query_string": b""}, "/"),
    ],
)
def test_raw_path_with_query(scope, expected):
    assert raw_path_with_query(scope) == expected
