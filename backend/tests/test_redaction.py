import json

from app.core.redaction import REDACTED, redact_body, redact_headers, redact_value


def test_sensitive_headers_are_masked():
    headers = {
        "Authorization": "Bearer abc",
        "Cookie": "session=1",
        "X-API-Key": "k",
        "Content-Type": "application/json",
    }
    redacted = redact_headers(headers)
    assert redacted["Authorization"] == REDACTED
    assert redacted["Cookie"] == REDACTED
    assert redacted["X-API-Key"] == REDACTED
    assert redacted["Content-Type"] == "application/json"


def test_sensitive_fields_are_masked_at_any_depth():
    value = {
        "identifier": "alice",
        "password": "p",
        "newPassword": "n",
        "refresh_token": "r",
        "nested": [{"api-key": "k", "name": "x"}],
    }
    redacted = redact_value(value)
    assert redacted["identifier"] == "alice"
    assert redacted["password"] == REDACTED
    assert redacted["newPassword"] == REDACTED
    assert redacted["refresh_token"] == REDACTED
    assert redacted["nested"] == [{"api-key": REDACTED, "name": "x"}]


def test_redact_body():
    body = json.dumps({"identifier": "alice", "password": "hunter2"}).encode()
    rendered = redact_body(body, limit=1024)
    assert "hunter2" not in rendered
    assert json.loads(rendered)["password"] == REDACTED

    assert redact_body(b"", limit=1024) is None
    assert redact_body(body, limit=10) is None
    assert redact_body(b"password=hunter2", limit=1024) == "<16 bytes not captured>"
