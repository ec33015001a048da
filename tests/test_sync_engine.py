"""
Tests for the polling sync client.

Tests cover:
- Two users converging through ChatApi against the app
- Cursor captured before each request, kept on failure
- Failed requests routed to the notifier as client actions
- The polling loop surviving unexpected errors
"""

import threading
from datetime import datetime, timedelta, timezone

from chatroom.error_actions import Action
from chatroom.schemas import ClassifiedMessageResponse, MessageResponse
from chatroom.sync_client import ApiError, ChatApi, SyncEngine, SyncState


T0 = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
AUTHOR = {"firstName": "Alice", "lastName": "Smith"}


def message(message_id: int, content: str = "hi") -> MessageResponse:
    return MessageResponse(
        id=message_id, content=content, user_id=1, created_at=T0, updated_at=T0, user=AUTHOR
    )


def change(message_id: int, status: str, content: str = "hi") -> ClassifiedMessageResponse:
    return ClassifiedMessageResponse(
        id=message_id, content=content, user_id=1, created_at=T0, updated_at=T0, user=AUTHOR, status=status
    )


class FakeClock:
    """Advances one second per call."""

    def __init__(self):
        self.now = T0
        self.calls = []

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        self.calls.append(self.now)
        return self.now


class FakeApi:
    """Scripted responses: each entry is a value to return or an exception to raise."""

    def __init__(self, full=(), deltas=()):
        self.full = list(full)
        self.deltas = list(deltas)
        self.cursors = []
        self.sent = []
        self.failure = None

    def fetch_all(self):
        return list(self.full)

    def fetch_since(self, cursor):
        self.cursors.append(cursor)
        outcome = self.deltas.pop(0) if self.deltas else []
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def send(self, content):
        if self.failure:
            raise self.failure
        self.sent.append(content)
        return message(len(self.sent) + 100, content)

    def edit(self, message_id, content):
        if self.failure:
            raise self.failure
        return message(message_id, content)

    def delete(self, message_id):
        if self.failure:
            raise self.failure

    def search(self, text):
        return [message(1, text)]


def make_engine(api, **kwargs):
    actions = []
    engine = SyncEngine(api, notifier=actions.append, interval=0, clock=FakeClock(), **kwargs)
    return engine, actions


class TestCursor:

    def test_load_sets_cursor_from_time_before_request(self):
        engine, _ = make_engine(FakeApi(full=[message(1)]))

        assert engine.load()

        assert engine.cursor == engine._clock.calls[0]
        assert engine.displayed.ids() == [1]
        assert engine.state is SyncState.IDLE

    def test_refresh_before_load_does_full_fetch(self):
        api = FakeApi(full=[message(1), message(2)])
        engine, _ = make_engine(api)

        engine.refresh()

        assert engine.displayed.ids() == [1, 2]
        assert api.cursors == []

    def test_failed_refresh_keeps_cursor_and_retries_same_window(self):
        api = FakeApi(deltas=[ApiError(500, "boom"), [change(3, "new")]])
        engine, actions = make_engine(api)
        engine.load()
        first = engine.cursor

        assert engine.refresh() is False
        assert engine.cursor == first
        assert engine.state is SyncState.IDLE

        assert engine.refresh() is True
        assert api.cursors == [first, first]
        assert engine.cursor > first
        assert engine.displayed.ids() == [3]

    def test_cursor_is_time_before_each_request(self):
        api = FakeApi(deltas=[[], []])
        engine, _ = make_engine(api)
        engine.load()

        engine.refresh()
        engine.refresh()

        load_time, first_poll, second_poll = engine._clock.calls
        assert api.cursors == [load_time, first_poll]
        assert engine.cursor == second_poll


class TestFailures:

    def test_unauthorized_redirects_to_login(self):
        engine, actions = make_engine(FakeApi(deltas=[ApiError(401, "Unauthorized request")]))
        engine.load()

        engine.refresh()

        assert [a.action for a in actions] == [Action.REDIRECT_TO_LOGIN]

    def test_timeout_shows_error_page(self):
        engine, actions = make_engine(FakeApi(deltas=[ApiError(None, "timed out")]))
        engine.load()

        engine.refresh()

        assert actions[0].action is Action.SHOW_ERROR_PAGE

    def test_failed_delete_shows_notice_and_skips_refresh(self):
        api = FakeApi()
        api.failure = ApiError(404, "Can not find the requested message to edit/delete")
        engine, actions = make_engine(api)
        engine.load()

        assert engine.delete(42) is False

        assert actions[0].action is Action.SHOW_NOTICE
        assert api.cursors == []

    def test_failed_send_uses_server_message(self):
        api = FakeApi()
        api.failure = ApiError(400, "Can not send message")
        engine, actions = make_engine(api)

        assert engine.send("") is None
        assert actions[0].notice == "Can not send message"


class TestActions:

    def test_edit_between_overlapping_polls_not_lost(self):
        api = FakeApi(deltas=[[change(5, "new", "hi")], [change(5, "new", "hello")]])
        engine, _ = make_engine(api)
        engine.load()

        engine.refresh()
        engine.refresh()

        assert engine.displayed.ids() == [5]
        assert engine.displayed.get(5).content == "hello"

    def test_send_triggers_refresh(self):
        api = FakeApi(deltas=[[change(101, "new", "hello")]])
        engine, _ = make_engine(api)
        engine.load()

        sent = engine.send("hello")

        assert sent.content == "hello"
        assert len(api.cursors) == 1
        assert engine.displayed.ids() == [101]

    def test_edit_and_delete_trigger_refresh(self):
        api = FakeApi(full=[message(1)], deltas=[[change(1, "updated", "edited")], [change(1, "deleted")]])
        engine, _ = make_engine(api)
        engine.load()

        engine.edit(1, "edited")
        assert engine.displayed.get(1).content == "edited"

        engine.delete(1)
        assert 1 not in engine.displayed

    def test_search_leaves_displayed_list_alone(self):
        engine, _ = make_engine(FakeApi(full=[message(1), message(2)]))
        engine.load()

        results = engine.search("  needle  ")

        assert [m.content for m in results] == ["needle"]
        assert engine.displayed.ids() == [1, 2]

    def test_on_change_only_for_real_changes(self):
        changes = []
        api = FakeApi(full=[message(1)], deltas=[[], [change(1, "new")], [change(2, "new")]])
        engine, _ = make_engine(api, on_change=changes.append)
        engine.load()

        engine.refresh()
        engine.refresh()
        engine.refresh()

        assert [result.added for result in changes] == [[2]]


class TestRunLoop:

    def test_continues_after_unexpected_error(self):
        stop = threading.Event()

        class FlakyApi(FakeApi):
            def fetch_since(self, cursor):
                self.cursors.append(cursor)
                if len(self.cursors) == 1:
                    raise RuntimeError("unexpected")
                stop.set()
                return []

        api = FlakyApi()
        engine, _ = make_engine(api)

        engine.run(stop)

        assert len(api.cursors) == 2
        assert api.cursors[0] == api.cursors[1]
        assert engine.state is SyncState.IDLE

    def test_survives_error_during_first_load(self):
        stop = threading.Event()

        class SlowStartApi(FakeApi):
            loads = 0

            def fetch_all(self):
                self.loads += 1
                if self.loads == 1:
                    raise ApiError(500, "boom")
                stop.set()
                return [message(1)]

        def broken_notifier(action):
            raise RuntimeError("view gone")

        api = SlowStartApi()
        engine = SyncEngine(api, notifier=broken_notifier, interval=0, clock=FakeClock())

        engine.run(stop)

        assert api.loads == 2
        assert engine.displayed.ids() == [1]
        assert engine.state is SyncState.IDLE

    def test_user_action_waits_for_poll_in_flight(self):
        class BlockingApi(FakeApi):
            def __init__(self):
                super().__init__()
                self.entered = threading.Event()
                self.release = threading.Event()

            def fetch_since(self, cursor):
                self.entered.set()
                self.release.wait(5)
                return super().fetch_since(cursor)

        api = BlockingApi()
        engine, _ = make_engine(api)
        engine.interval = 0.01
        engine.start()
        try:
            assert api.entered.wait(5)

            sender = threading.Thread(target=engine.send, args=("hello",))
            sender.start()
            sender.join(0.2)
            assert sender.is_alive()
            assert api.sent == []

            api.release.set()
            sender.join(5)
            assert not sender.is_alive()
            assert api.sent == ["hello"]
        finally:
            api.release.set()
            engine.stop(timeout=5)

    def test_start_and_stop_thread(self):
        engine, _ = make_engine(FakeApi())
        engine.interval = 0.01

        thread = engine.start()
        engine.stop(timeout=5)

        assert not thread.is_alive()


class TestAgainstApp:
    """Two clients converging through the real endpoints."""

    def test_other_user_sees_post_edit_delete(self, alice, bob):
        author = SyncEngine(ChatApi(alice), notifier=lambda action: None)
        viewer = SyncEngine(ChatApi(bob), notifier=lambda action: None)
        assert author.load()
        assert viewer.load()

        posted = author.send("hi")
        assert author.displayed.ids() == [posted.id]

        viewer.refresh()
        assert viewer.displayed.ids() == [posted.id]
        assert viewer.displayed.get(posted.id).user.first_name == "Alice"

        author.edit(posted.id, "hello")
        viewer.refresh()
        assert viewer.displayed.get(posted.id).content == "hello"

        author.delete(posted.id)
        viewer.refresh()
        assert viewer.displayed.ids() == []

    def test_edit_during_overlapping_windows_reaches_viewer(self, alice, bob):
        pinned = []

        def clock():
            return pinned[0] if pinned else datetime.now(timezone.utc)

        viewer = SyncEngine(ChatApi(bob), notifier=lambda action: None, clock=clock)
        viewer.load()
        pinned.append(viewer.cursor)

        posted = ChatApi(alice).send("hi")
        viewer.refresh()
        assert viewer.displayed.get(posted.id).content == "hi"
        assert viewer.cursor == pinned[0]

        ChatApi(alice).edit(posted.id, "hello")
        pinned.clear()
        viewer.refresh()
        viewer.refresh()

        assert viewer.displayed.ids() == [posted.id]
        assert viewer.displayed.get(posted.id).content == "hello"

    def test_non_owner_edit_shows_error_page(self, alice, bob):
        posted = ChatApi(alice).send("mine")
        actions = []
        viewer = SyncEngine(ChatApi(bob), notifier=actions.append)
        viewer.load()

        assert viewer.edit(posted.id, "yours") is None

        assert actions[0].action is Action.SHOW_ERROR_PAGE

    def test_signed_out_client_redirected_to_login(self, alice):
        actions = []
        engine = SyncEngine(ChatApi(alice), notifier=actions.append)
        engine.load()
        engine.api.logout()

        engine.refresh()

        assert actions[-1].action is Action.REDIRECT_TO_LOGIN
        assert actions[-1].location == "/login"
