import pytest

from proxy_functions.errors import ValidationError
from proxy_functions.utils import get_bearer_token, normalize_headers, parse_json_body, resolve_origin

DEFAULT = "http://localhost:8888"


@pytest.mark.parametrize(
    "headers, expected",
    [
        ({"Authorization": "Bearer abc"}, "abc"),
        ({"AUTHORIZATION": "Bearer abc"}, "abc"),
        ({"authorization": "Bearer abc extra"}, "abc"),
        ({"Authorization": "bearer abc"}, None),
        ({"Authorization": "Bearer"}, None),
        ({"Authorization": "Bearer  abc"}, None),
        ({}, None),
    ],
)
def test_get_bearer_token(headers, expected):
    assert get_bearer_token(normalize_headers(headers)) == expected


@pytest.mark.parametrize(
    "headers, expected",
    [
        ({}, DEFAULT),
        ({"origin": "https://app.example.com"}, "https://app.example.com"),
        ({"origin": "https://app.example.com/"}, "https://app.example.com"),
        ({"origin": "HTTPS://App.Example.com:443"}, "https://app.example.com"),
        ({"origin": "http://localhost:5173"}, "http://localhost:5173"),
        ({"referer": "https://app.example.com/projects/7?tab=1"}, "https://app.example.com"),
        ({"origin": "https://a.example.com", "referer": "https://b.example.com/x"}, "https://a.example.com"),
        ({"origin": "", "referer": "https://b.example.com/x"}, "https://b.example.com"),
        ({"origin": "http://bad host:99999/path"}, "http://bad host:99999"),
        ({"referer": "not a url/at/all"}, "not a url/at/all"),
    ],
)
def test_resolve_origin(headers, expected):
    assert resolve_origin(headers, DEFAULT) == expected


def test_parse_json_body():
    assert parse_json_body(b"") == {}
    assert parse_json_body(None) == {}
    assert parse_json_body(b'{"a": 1}') == {"a": 1}
    with pytest.raises(ValidationError) as exc:
        parse_json_body(b"{nope")
    assert exc.value.status_code == 400
    assert exc.value.message == "Invalid JSON payload"


@pytest.mark.parametrize("raw", [b'{"t": NaN}', b'{"t": Infinity}', b'{"t": -Infinity}', b"NaN"])
def test_parse_json_body_refuses_non_finite_constants(raw):
    with pytest.raises(ValidationError) as exc:
        parse_json_body(raw)
    assert exc.value.message == "Invalid JSON payload"
