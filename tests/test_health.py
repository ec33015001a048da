"""
Tests for health probes, metrics, request ids and the fault page.
"""

import inspect

import pytest

from chatroom import main
from chatroom.storage import Base, engine
from chatroom.utils import strip_markup

from conftest import send_message


class TestHealth:

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_schema(self, client):
        Base.metadata.drop_all(bind=engine)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"


class TestMetrics:

    def test_mutation_outcomes_exposed(self, alice):
        send_message(alice, "counted")
        alice.post("/api/message", json={"messageContent": "   "})

        text = alice.get("/metrics").text

        assert 'message_operations_total{operation="write",result="ok"}' in text
        assert 'message_operations_total{operation="write",result="validation_error"}' in text
        assert "http_requests_total" in text

    def test_message_ids_collapsed_in_path_label(self, alice):
        created = send_message(alice, "bye")
        alice.delete(f"/api/message/{created['id']}")

        text = alice.get("/metrics").text

        assert 'path="/api/message/{id}"' in text
        assert f'path="/api/message/{created["id"]}"' not in text

    def test_sync_statuses_counted(self, alice, bob):
        send_message(alice, "hi")
        bob.get("/api/message/date", params={"lastFetchTimeStamp": "2000-01-01T00:00:00Z"})

        assert 'sync_messages_total{status="new"}' in bob.get("/metrics").text


class TestResponses:

    def test_request_id_header(self, client):
        response = client.get("/health/live")

        assert response.headers["X-Request-ID"]

    def test_error_page_is_500_html(self, client):
        response = client.get("/error")

        assert response.status_code == 500
        assert response.headers["content-type"].startswith("text/html")
        assert "Something went wrong" in response.text

    def test_unknown_route_uses_envelope(self, client):
        response = client.get("/nope")

        assert response.status_code == 404
        assert response.json() == {"message": "Not Found"}


class TestStripMarkup:

    @pytest.mark.parametrize("raw,expected", [
        ("plain text", "plain text"),
        ("<b>bold</b>", "bold"),
        ('<a href="javascript:alert(1)">link</a>', "link"),
        ("<style>p {}</style>text", "text"),
        ("<img src=x onerror=alert(1)>", ""),
        ("a &amp; b", "a &amp; b"),
        ("&#60;script&#62;", "&#60;script&#62;"),
    ])
    def test_strip(self, raw, expected):
        assert strip_markup(raw) == expected


class TestRouteHandlers:

    @pytest.mark.parametrize("handler", [
        main.health_ready,
        main.register,
        main.login,
        main.signout,
        main.current_user,
        main.get_all,
        main.get_by_date,
        main.search,
        main.send,
        main.edit,
        main.remove,
    ])
    def test_blocking_handlers_run_in_threadpool(self, handler):
        assert not inspect.iscoroutinefunction(handler)
