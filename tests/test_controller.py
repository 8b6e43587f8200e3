"""Tests for the view controller."""

import asyncio

import pytest

from chatlog_viewer.backend import BackendError
from chatlog_viewer.controller import (
    DefaultView,
    Layout,
    RenderTarget,
    SearchView,
    ViewController,
    ViewState,
    parse_route,
)
from chatlog_viewer.navigation import BEGINNING_NOTICE, END_NOTICE
from chatlog_viewer.notices import ERROR, INFO
from chatlog_viewer.records import MessageRecord
from chatlog_viewer.render import DateHeader, MessageFragment


def record(timestamp, anchor, author="alice", body="hi"):
    return MessageRecord(timestamp=timestamp, author=author, body=body, anchor=anchor)


LOGS = {
    "2023-10-21": [
        record("2023-10-21T09:00:00", 1, "alice", "morning"),
        record("2023-10-21T09:05:00", 2, "bob", "\x02hey\x02"),
        record("2023-10-21T10:00:00", 3, "carol", "see http://example.com"),
    ],
    "2023-10-20": [record("2023-10-20T20:00:00", 1, "dave", "evening")],
    "2023-10-19": [record("2023-10-19T08:00:00", 4, "erin", "early")],
}


class FakeBackend:
    """In-memory backend whose calls can be held back or made to fail."""

    def __init__(self, logs=None, dates=None, search_results=None):
        self.logs = LOGS if logs is None else logs
        self.dates = sorted(self.logs, reverse=True) if dates is None else dates
        self.search_results = search_results or []
        self.gates = {}
        self.fail = set()
        self.calls = []

    async def _call(self, key):
        self.calls.append(key)
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        if key in self.fail:
            raise BackendError(f"boom {key}")

    async def fetch_dates(self):
        await self._call("dates")
        return list(self.dates)

    async def fetch_logs(self, date=None):
        await self._call(date or "latest")
        if date is None:
            date = self.dates[0] if self.dates else None
        return list(self.logs.get(date, []))

    async def search(self, query):
        await self._call(f"search:{query}")
        return list(self.search_results)


class RecordingTarget(RenderTarget):
    def __init__(self):
        self.calls = []
        self.paints = []
        self.notices = {}
        self.current_date = None
        self.bounds = None
        self.controls_enabled = None
        self.search_query = None
        self.location = None
        self.collapsed = None
        self.error_cues = 0

    def begin_loading(self):
        self.calls.append("begin_loading")

    def paint(self, fragments, anchor=None, scroll_bottom=False, empty_message=None):
        self.calls.append("paint")
        self.paints.append(
            {
                "fragments": list(fragments),
                "anchor": anchor,
                "scroll_bottom": scroll_bottom,
                "empty_message": empty_message,
            }
        )

    def cancel_loading(self):
        self.calls.append("cancel_loading")

    def set_current_date(self, date):
        self.current_date = date

    def set_date_bounds(self, oldest, newest):
        self.bounds = (oldest, newest)

    def set_controls_enabled(self, enabled):
        self.controls_enabled = enabled

    def set_search_query(self, query):
        self.search_query = query

    def set_location(self, path):
        self.location = path

    def set_collapsed(self, collapsed):
        self.calls.append(("set_collapsed", collapsed))
        self.collapsed = collapsed

    def show_notice(self, notice):
        self.notices[notice.id] = notice

    def hide_notice(self, notice):
        self.notices.pop(notice.id, None)

    def play_error_cue(self):
        self.error_cues += 1

    def messages(self):
        return [(n.kind, n.message) for n in self.notices.values()]


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def target():
    return RecordingTarget()


@pytest.fixture
def controller(backend, target):
    return ViewController(backend, target)


def run(coro):
    return asyncio.run(coro)


def ids(paint):
    return [f.element_id for f in paint["fragments"]]


class TestParseRoute:
    """Tests for working out the view from a URL."""

    def test_root_is_latest(self):
        assert parse_route("/") == DefaultView(None, None)
        assert parse_route("") == DefaultView(None, None)

    def test_latest_keyword(self):
        assert parse_route("/latest") == DefaultView(None, None)

    def test_date(self):
        assert parse_route("/2023-10-20") == DefaultView("2023-10-20", None)

    def test_anchor_from_fragment(self):
        assert parse_route("/2023-10-20#103") == DefaultView("2023-10-20", "103")

    def test_anchor_from_offset_parameter(self):
        assert parse_route("/2023-10-20?offset=7") == DefaultView("2023-10-20", "7")

    def test_hash_route(self):
        assert parse_route("/#/2023-10-20/103") == DefaultView("2023-10-20", "103")
        assert parse_route("/#/2023-10-20") == DefaultView("2023-10-20", None)

    def test_full_url(self):
        assert parse_route("http://host:3030/2023-10-20") == DefaultView("2023-10-20", None)

    def test_search(self):
        assert parse_route("/search?q=hello%20world") == SearchView("hello world")

    def test_search_without_query(self):
        assert parse_route("/search") == SearchView(None)
        assert parse_route("/search?q=%20") == SearchView(None)


class TestInitialLoad:
    """Tests for starting the viewer."""

    def test_latest_day(self, controller, target, backend):
        run(controller.start("/"))
        assert controller.state is ViewState.READY
        assert target.calls[:2] == ["begin_loading", "paint"]
        paint = target.paints[0]
        assert ids(paint) == ["1", "2", "3"]
        assert [f.author for f in paint["fragments"]] == ["alice", "bob", "carol"]
        assert paint["fragments"][1].body == "<b>hey</b>"
        assert 'href="http://example.com"' in paint["fragments"][2].body
        assert paint["scroll_bottom"] is True
        assert paint["anchor"] is None
        assert target.current_date == "2023-10-21"
        assert target.bounds == ("2023-10-19", "2023-10-21")
        assert target.controls_enabled is True
        assert target.location is None
        assert sorted(backend.calls) == ["dates", "latest"]

    def test_deep_link_scrolls_to_anchor(self, controller, target):
        run(controller.start("/2023-10-21#2"))
        paint = target.paints[0]
        assert paint["anchor"] == "2"
        assert paint["scroll_bottom"] is False

    def test_specific_date(self, controller, target):
        run(controller.start("/2023-10-20"))
        assert ids(target.paints[0]) == ["1"]
        assert target.paints[0]["fragments"][0].author == "dave"
        assert controller.navigation.current_index == 1
        assert target.current_date == "2023-10-20"
        assert target.location is None

    def test_unknown_date_falls_back_to_newest(self, controller, target, backend):
        run(controller.start("/1999-01-01#5"))
        assert backend.calls[-1] == "2023-10-21"
        assert len(target.paints) == 1
        assert ids(target.paints[0]) == ["1", "2", "3"]
        assert target.paints[0]["anchor"] is None
        assert target.current_date == "2023-10-21"
        assert target.location == "/2023-10-21"

    def test_no_logs_at_all(self, target):
        controller = ViewController(FakeBackend(logs={}), target)
        run(controller.start("/"))
        assert controller.state is ViewState.READY
        assert target.paints[0]["fragments"] == []
        assert target.paints[0]["empty_message"] == "No logs for this date"
        assert target.controls_enabled is False

    def test_failure_shows_error(self, controller, target, backend):
        backend.fail.add("dates")
        run(controller.start("/"))
        assert target.paints == []
        assert target.calls[-1] == "cancel_loading"
        assert target.messages() == [(ERROR, "Could not load logs: boom dates")]
        assert target.error_cues == 1
        assert controller.state is ViewState.UNINITIALIZED

    def test_logs_failure_keeps_navigation(self, controller, target, backend):
        backend.fail.add("latest")
        run(controller.start("/"))
        assert target.paints == []
        assert target.messages() == [(ERROR, "Could not load logs: boom latest")]
        assert target.error_cues == 1
        assert target.bounds == ("2023-10-19", "2023-10-21")
        assert target.controls_enabled is True
        assert target.current_date == "2023-10-21"
        assert controller.state is ViewState.READY

        assert run(controller.previous()) is True
        assert backend.calls[-1] == "2023-10-20"
        assert target.current_date == "2023-10-20"
        assert target.location == "/2023-10-20"
        assert len(target.paints) == 1

    def test_requested_day_failure_can_page_away(self, controller, target, backend):
        backend.fail.add("2023-10-20")
        run(controller.start("/2023-10-20"))
        assert target.messages() == [(ERROR, "Could not load logs: boom 2023-10-20")]
        assert target.current_date == "2023-10-20"
        assert run(controller.next()) is True
        assert target.current_date == "2023-10-21"
        assert len(target.paints) == 1

    def test_start_twice(self, controller):
        async def scenario():
            await controller.start("/")
            await controller.start("/")

        with pytest.raises(RuntimeError):
            run(scenario())


class TestDateNavigation:
    """Tests for next, previous and jump."""

    def test_load_day_then_go_older(self, target):
        logs = {
            "2023-10-21": [record("2023-10-21T01:00:00", 0)],
            "2023-10-20": [
                record("2023-10-20T10:00:00", 103, "alice", "one"),
                record("2023-10-20T10:01:00", 104, "bob", "two"),
                record("2023-10-20T10:02:00", 107, "carol", "three"),
            ],
            "2023-10-18": [record("2023-10-18T23:00:00", 9)],
        }
        backend = FakeBackend(logs=logs)
        controller = ViewController(backend, target)

        async def scenario():
            await controller.start("/2023-10-20")
            fragments = target.paints[-1]["fragments"]
            assert [f.element_id for f in fragments] == ["103", "104", "107"]
            assert [f.href for f in fragments] == ["#103", "#104", "#107"]
            assert [f.author for f in fragments] == ["alice", "bob", "carol"]
            assert all(f.color.startswith("#") for f in fragments)
            return await controller.previous()

        assert run(scenario()) is True
        assert backend.calls[-1] == "2023-10-18"
        assert target.location == "/2023-10-18"
        assert target.current_date == "2023-10-18"

    def test_previous_loads_older_day(self, controller, target, backend):
        async def scenario():
            await controller.start("/")
            return await controller.previous()

        assert run(scenario()) is True
        assert backend.calls[-1] == "2023-10-20"
        assert ids(target.paints[-1]) == ["1"]
        assert target.paints[-1]["scroll_bottom"] is True
        assert target.current_date == "2023-10-20"
        assert target.location == "/2023-10-20"
        assert controller.state is ViewState.READY

    def test_next_loads_newer_day(self, controller, target):
        async def scenario():
            await controller.start("/2023-10-19")
            return await controller.next()

        assert run(scenario()) is True
        assert target.current_date == "2023-10-20"
        assert target.location == "/2023-10-20"

    def test_next_at_newest_day(self, controller, target, backend):
        async def scenario():
            await controller.start("/")
            return await controller.next()

        assert run(scenario()) is False
        assert target.calls.count("begin_loading") == 1
        assert len(backend.calls) == 2
        assert target.messages() == [(INFO, BEGINNING_NOTICE)]

    def test_previous_at_oldest_day(self, controller, target):
        async def scenario():
            await controller.start("/2023-10-19")
            return await controller.previous()

        assert run(scenario()) is False
        assert target.messages() == [(INFO, END_NOTICE)]
        assert target.current_date == "2023-10-19"

    def test_jump(self, controller, target):
        async def scenario():
            await controller.start("/")
            return await controller.jump("2023-10-19")

        assert run(scenario()) is True
        assert ids(target.paints[-1]) == ["4"]
        assert target.location == "/2023-10-19"

    def test_jump_to_unknown_date(self, controller, target):
        async def scenario():
            await controller.start("/")
            return await controller.jump("2020-02-02")

        assert run(scenario()) is False
        assert target.messages() == [(INFO, "No logs for 2020-02-02")]
        assert target.current_date == "2023-10-21"

    def test_failure_rolls_back(self, controller, target, backend):
        backend.fail.add("2023-10-20")

        async def scenario():
            await controller.start("/")
            return await controller.previous()

        assert run(scenario()) is False
        assert target.calls[-1] == "cancel_loading"
        assert len(target.paints) == 1
        assert controller.navigation.current_index == 0
        assert target.current_date == "2023-10-21"
        assert target.location is None
        assert controller.state is ViewState.READY
        assert target.messages() == [
            (ERROR, "Could not load logs for 2023-10-20: boom 2023-10-20")
        ]
        assert target.error_cues == 1

    def test_latest_navigation_wins(self, controller, target, backend):
        async def scenario():
            await controller.start("/")
            backend.gates["2023-10-20"] = asyncio.Event()
            slow = asyncio.create_task(controller.previous())
            await asyncio.sleep(0)
            fast = await controller.jump("2023-10-19")
            backend.gates["2023-10-20"].set()
            return await slow, fast

        slow, fast = run(scenario())
        assert (slow, fast) == (False, True)
        assert len(target.paints) == 2
        assert ids(target.paints[-1]) == ["4"]
        assert target.location == "/2023-10-19"
        assert target.current_date == "2023-10-19"

    def test_stale_failure_is_ignored(self, controller, target, backend):
        backend.fail.add("2023-10-20")

        async def scenario():
            await controller.start("/")
            backend.gates["2023-10-20"] = asyncio.Event()
            slow = asyncio.create_task(controller.previous())
            await asyncio.sleep(0)
            await controller.jump("2023-10-19")
            backend.gates["2023-10-20"].set()
            await slow

        run(scenario())
        assert target.messages() == []
        assert target.error_cues == 0
        assert target.current_date == "2023-10-19"


class TestSearch:
    """Tests for the search view."""

    @pytest.fixture
    def backend(self):
        return FakeBackend(
            search_results=[
                record("2023-10-21T10:00:00", 3, "carol", "hi there"),
                record("2023-10-20T20:00:00", 1, "dave", "hi again"),
                record("2023-10-21T09:00:00", 1, "alice", "hi"),
            ]
        )

    def test_search_route_groups_by_date(self, controller, target):
        run(controller.start("/search?q=hi"))
        assert controller.state is ViewState.SEARCH_READY
        assert target.search_query == "hi"
        assert target.controls_enabled is False
        fragments = target.paints[0]["fragments"]
        assert [type(f) for f in fragments] == [
            DateHeader,
            MessageFragment,
            MessageFragment,
            DateHeader,
            MessageFragment,
        ]
        assert [f.date for f in fragments if isinstance(f, DateHeader)] == [
            "2023-10-21",
            "2023-10-20",
        ]
        assert fragments[1].href == "/2023-10-21#3"
        assert target.location is None

    def test_missing_query(self, controller, target, backend):
        run(controller.start("/search"))
        assert backend.calls == []
        assert target.paints[0]["empty_message"] == "Search parameter is missing"
        assert controller.state is ViewState.SEARCH_READY

    def test_search_from_date_view(self, controller, target):
        async def scenario():
            await controller.start("/")
            return await controller.search("  hi  ")

        assert run(scenario()) is True
        assert target.location == "/search?q=hi"
        assert controller.state is ViewState.SEARCH_READY

    def test_empty_query_is_rejected(self, controller, target, backend):
        async def scenario():
            await controller.start("/")
            return await controller.search("   ")

        assert run(scenario()) is False
        assert target.messages() == [(INFO, "Enter a search query")]
        assert not any(call.startswith("search:") for call in backend.calls)

    def test_no_results(self, target):
        controller = ViewController(FakeBackend(), target)
        run(controller.start("/search?q=nothing"))
        assert target.paints[0]["fragments"] == []
        assert target.paints[0]["empty_message"] == "No results"

    def test_failure(self, controller, target, backend):
        backend.fail.add("search:author:")

        async def scenario():
            await controller.start("/")
            return await controller.search("author:")

        assert run(scenario()) is False
        assert target.messages() == [(ERROR, "Search failed: boom search:author:")]
        assert controller.state is ViewState.READY
        assert len(target.paints) == 1


class TestLayout:
    """Tests for collapsing the date controls."""

    def test_layout_rules(self):
        layout = Layout(800)
        assert layout.collapsed is False
        layout.resize(600)
        assert layout.collapsed is True
        assert layout.toggle() is True
        assert layout.collapsed is False
        layout.resize(1024)
        assert layout.collapsed is False
        assert layout.override is None
        assert layout.toggle() is False
        layout.resize(799)
        assert layout.collapsed is True

    def test_resize_applies_when_ready(self, controller, target):
        async def scenario():
            await controller.start("/")
            controller.resize(600)
            controller.toggle_collapse()
            controller.resize(1200)

        run(scenario())
        assert [c for c in target.calls if isinstance(c, tuple)] == [
            ("set_collapsed", True),
            ("set_collapsed", False),
            ("set_collapsed", False),
        ]

    def test_toggle_ignored_when_wide(self, controller, target):
        run(controller.start("/"))
        assert controller.toggle_collapse() is False
        assert target.collapsed is None

    def test_resize_deferred_while_loading(self, controller, target, backend):
        async def scenario():
            backend.gates["dates"] = asyncio.Event()
            task = asyncio.create_task(controller.start("/"))
            await asyncio.sleep(0)
            controller.resize(500)
            assert target.collapsed is None
            backend.gates["dates"].set()
            await task

        run(scenario())
        assert target.calls[-1] == ("set_collapsed", True)

    def test_custom_threshold(self, backend, target):
        controller = ViewController(backend, target, collapse_width=400)
        run(controller.start("/"))
        controller.resize(500)
        assert target.collapsed is False


def test_close_removes_notices(controller, target):
    async def scenario():
        await controller.start("/")
        await controller.next()
        assert target.notices
        controller.close()

    run(scenario())
    assert target.notices == {}
