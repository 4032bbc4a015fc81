"""Tests for the session recorder."""
import asyncio

import pytest

from capturepipe.collector import CollectorState, ListenerRegistry
from capturepipe.config import RecorderConfig
from capturepipe.environment import Capabilities, PageEnvironment
from capturepipe.recorder import SessionRecorder

from conftest import API_KEY, EVENTS_URL, HOST, SESSIONS_URL

FIREFOX_WIN = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0"


def make_recorder(transport, clock, registry=None, capabilities=None, ready_state="",
                  snapshot=None, **options):
    options.setdefault("batch_timeout", 60_000)
    config = RecorderConfig(api_key=API_KEY, host=HOST, **options)
    environment = PageEnvironment(url="https://shop.test/", referrer="https://search.test/",
                                  user_agent=FIREFOX_WIN, language="en-GB", cookie_enabled=True,
                                  viewport_width=900, screen_width=1440, screen_height=900,
                                  ready_state=ready_state,
                                  capabilities=capabilities if capabilities is not None else Capabilities())
    return SessionRecorder(config, snapshot=snapshot, registry=registry,
                           transport=transport, environment=environment, clock=clock)


def click(x=10, y=20):
    return {"x": x, "y": y, "text": "Add to cart", "tagName": "BUTTON", "eventClass": "MouseEvent",
            "target": {"tag": "button", "classes": ["btn"], "index": 1,
                       "parent": {"tag": "body", "root": True}}}


def types(recorder):
    return [event.event_type for event in recorder.buffer.peek()]


@pytest.mark.asyncio
async def test_start_registers_session(transport, clock):
    async with make_recorder(transport, clock, user_id="u-7") as recorder:
        await recorder.wait_idle()
        [registration] = transport.sent_to(SESSIONS_URL)
        assert recorder.session_id.startswith("sr_")
        assert registration["session_id"] == recorder.session_id
        assert registration["user_id"] == "u-7"
        assert (registration["browser"], registration["os"], registration["device_type"]) == \
            ("Firefox", "Windows", "tablet")
        assert registration["referrer"] == "https://search.test/"
        assert registration["metadata"] == {"userAgent": FIREFOX_WIN, "language": "en-GB",
                                            "cookieEnabled": True}
        assert recorder.recording_id == "rec-1"


@pytest.mark.asyncio
async def test_flush_sends_grouped_batch(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry) as recorder:
        await recorder.wait_idle()
        clock.advance(250)
        registry.dispatch("click", click())
        registry.dispatch("keydown", {"key": "a", "code": "KeyA", "keyCode": 65,
                                      "target": {"tag": "input", "id": "q"}})
        assert await recorder.flush() is True

        [batch] = transport.sent_to(EVENTS_URL)
        assert batch["recording_id"] == "rec-1"
        assert batch["session_id"] == recorder.session_id
        first, second = batch["events"]
        assert first["event_type"] == "click"
        assert first["timestamp"] == 250
        assert first["data"]["target"] == "body:nth-child(1) > button.btn"
        assert first["data"]["type"] == "MouseEvent"
        assert second["data"]["target"] == "#q"
        assert len(recorder.buffer) == 0


@pytest.mark.asyncio
async def test_reaching_batch_size_sends_without_timer(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry, batch_size=3) as recorder:
        await recorder.wait_idle()
        for i in range(3):
            registry.dispatch("click", click(x=i))
        await recorder.wait_idle()
        [batch] = transport.sent_to(EVENTS_URL)
        assert [e["data"]["x"] for e in batch["events"]] == [0, 1, 2]


@pytest.mark.asyncio
async def test_failed_batch_keeps_order_ahead_of_new_events(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry) as recorder:
        await recorder.wait_idle()
        registry.dispatch("click", click(x=1))
        registry.dispatch("click", click(x=2))
        transport.fail_urls.add(EVENTS_URL)
        assert await recorder.flush() is False
        registry.dispatch("click", click(x=3))

        transport.fail_urls.clear()
        assert await recorder.flush() is True
        delivered = transport.sent_to(EVENTS_URL)[-1]
        assert [e["data"]["x"] for e in delivered["events"]] == [1, 2, 3]


@pytest.mark.asyncio
async def test_events_wait_for_registration(transport, clock):
    transport.recording_id = None
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry) as recorder:
        await recorder.wait_idle()
        assert recorder.recording_id is None
        registry.dispatch("click", click())

        assert await recorder.flush() is False
        assert transport.sent_to(EVENTS_URL) == []
        assert len(recorder.buffer) == 1

        transport.recording_id = "rec-2"
        assert await recorder.flush() is True
        [batch] = transport.sent_to(EVENTS_URL)
        assert batch["recording_id"] == "rec-2"


@pytest.mark.asyncio
async def test_pause_and_resume_leave_markers(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry) as recorder:
        registry.dispatch("click", click())
        recorder.pause_recording()
        assert recorder.state is CollectorState.PAUSED
        registry.dispatch("click", click())
        recorder.resume_recording()
        registry.dispatch("keyup", {"key": "b"})

        assert types(recorder) == ["click", "recorder", "recorder", "keyup"]
        actions = [e.data["action"] for e in recorder.buffer.peek() if e.event_type == "recorder"]
        assert actions == ["pause", "resume"]


@pytest.mark.asyncio
async def test_pause_twice_is_a_no_op(transport, clock):
    async with make_recorder(transport, clock) as recorder:
        recorder.pause_recording()
        recorder.pause_recording()
        recorder.resume_recording()
        recorder.resume_recording()
        assert types(recorder) == ["recorder", "recorder"]


@pytest.mark.asyncio
async def test_stop_recording_marks_and_flushes(transport, clock):
    registry = ListenerRegistry()
    recorder = make_recorder(transport, clock, registry=registry)
    await recorder.start()
    registry.dispatch("click", click())
    recorder.stop_recording()
    await recorder.wait_idle()

    [batch] = transport.sent_to(EVENTS_URL)
    assert [e["event_type"] for e in batch["events"]] == ["click", "recorder"]
    assert batch["events"][-1]["data"]["action"] == "stop"

    registry.dispatch("click", click())
    assert len(recorder.buffer) == 0

    await recorder.destroy()
    # No second stop marker
    assert len(transport.sent_to(EVENTS_URL)) == 1


@pytest.mark.asyncio
async def test_unload_beacons_events_then_ends_session_once(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry) as recorder:
        await recorder.wait_idle()
        registry.dispatch("click", click(x=1))
        registry.dispatch("click", click(x=2))

        registry.dispatch("beforeunload")
        registry.dispatch("pagehide")

        assert len(transport.beacons) == 2
        (events_url, batch), (end_url, end) = transport.beacons
        assert events_url == f"{EVENTS_URL}?key={API_KEY}"
        assert [e["data"]["x"] for e in batch["events"]] == [1, 2]
        assert batch["recording_id"] == "rec-1"
        assert end_url == f"{SESSIONS_URL}?key={API_KEY}"
        assert end == {"session_id": recorder.session_id,
                       "metadata": {"events_count": 2, "ended_at": clock.now}}


@pytest.mark.asyncio
async def test_hidden_page_beacons_without_ending_session(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry) as recorder:
        await recorder.wait_idle()
        registry.dispatch("click", click())
        registry.dispatch("visibilitychange", {"state": "hidden"})
        [(url, _)] = transport.beacons
        assert url.startswith(EVENTS_URL)


@pytest.mark.asyncio
async def test_unload_before_registration_holds_events(transport, clock):
    transport.recording_id = None
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry) as recorder:
        await recorder.wait_idle()
        registry.dispatch("click", click())
        registry.dispatch("beforeunload")
        assert transport.beacons == []
        assert len(recorder.buffer) == 1


@pytest.mark.asyncio
async def test_destroy_is_idempotent(transport, clock):
    registry = ListenerRegistry()
    recorder = make_recorder(transport, clock, registry=registry)
    await recorder.start()
    registry.dispatch("click", click())

    await recorder.destroy()
    assert len(registry) == 0
    [batch] = transport.sent_to(EVENTS_URL)
    assert [e["event_type"] for e in batch["events"]] == ["click", "recorder"]

    await recorder.destroy()
    assert len(transport.sent_to(EVENTS_URL)) == 1
    assert recorder.state is CollectorState.DESTROYED


@pytest.mark.asyncio
async def test_mutation_bursts_become_one_event(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry, mutation_debounce=5,
                             snapshot=lambda: "<body><ul id='cart'></ul></body>") as recorder:
        record = {"type": "childList", "target": {"tag": "ul", "id": "cart"}, "addedNodes": 2}
        registry.dispatch("mutations", {"records": [record]})
        registry.dispatch("mutations", {"records": [record, record]})
        await asyncio.sleep(0.05)

        [event] = recorder.buffer.peek()
        assert event.event_type == "mutation"
        assert len(event.data["mutations"]) == 2
        assert event.data["mutations"][0]["target"] == "#cart"
        assert event.data["html"].startswith("<body>")


@pytest.mark.asyncio
async def test_missing_capabilities_skip_their_listeners(transport, clock):
    registry = ListenerRegistry()
    caps = Capabilities(mutation_observer=False, performance_observer=False, beacon=False)
    async with make_recorder(transport, clock, registry=registry, capabilities=caps):
        assert registry.listeners("mutations") == []
        assert registry.listeners("lcp") == []
        assert registry.listeners("click")
        assert registry.listeners("online")


@pytest.mark.asyncio
async def test_already_loaded_document_is_noted(transport, clock):
    async with make_recorder(transport, clock, ready_state="complete") as recorder:
        events = recorder.buffer.peek()
        assert [e.event_type for e in events] == ["DOMContentLoaded", "load"]
        assert all(e.data["loaded"] is True for e in events)


@pytest.mark.asyncio
async def test_connectivity_performance_and_network_events(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry) as recorder:
        registry.dispatch("offline")
        registry.dispatch("lcp", {"startTime": 812.5, "size": 40000, "id": "hero"})
        registry.dispatch("network_request", {
            "requestId": "9", "type": "Fetch", "tab_id": "t1",
            "request": {"url": "https://api.shop.test/cart", "method": "GET", "headers": {}},
        })
        registry.dispatch("network_request", {
            "requestId": "10", "type": "Image", "tab_id": "t1",
            "request": {"url": "https://cdn.shop.test/a.png", "method": "GET", "headers": {}},
        })

        offline, lcp, request = recorder.buffer.peek()
        assert offline.event_type == "network" and offline.data["status"] == "offline"
        assert lcp.event_type == "lcp" and lcp.data["startTime"] == 812.5
        assert request.data["kind"] == "request"
        assert request.data["url"] == "https://api.shop.test/cart"


@pytest.mark.asyncio
async def test_network_capture_can_be_turned_off(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry, capture_network=False):
        assert registry.listeners("network_request") == []


def test_extract_event_data_per_event_family(transport, clock):
    recorder = make_recorder(transport, clock)
    clock.advance(40)

    scroll = recorder.extract_event_data("scroll", {"scrollX": 0, "scrollY": 300,
                                                    "scrollHeight": 2000, "clientHeight": 800})
    assert scroll == {"timestamp": 40, "scrollX": 0, "scrollY": 300, "scrollHeight": 2000,
                      "clientHeight": 800, "type": "Event"}

    resize = recorder.extract_event_data("resize", {"innerWidth": 640, "innerHeight": 480,
                                                    "eventClass": "UIEvent"})
    assert (resize["width"], resize["height"], resize["type"]) == (640, 480, "UIEvent")

    typed = recorder.extract_event_data("input", {"value": "x" * 300, "inputType": "text",
                                                  "tagName": "INPUT", "target": {"tag": "input", "id": "email"}})
    assert typed["target"] == "#email"
    assert len(typed["value"]) == 100
    assert typed["inputType"] == "text"

    error = recorder.extract_event_data("error", {"message": "boom", "filename": "app.js", "lineno": 3})
    assert (error["message"], error["source"], error["lineno"]) == ("boom", "app.js", 3)

    moved = recorder.extract_event_data("mousemove", {"x": 1, "y": 2, "text": None})
    assert moved["target"] == "unknown"
    assert moved["targetText"] == ""
    assert "href" not in moved

    focus = recorder.extract_event_data("focus", {"target": {"tag": "body", "root": True}})
    assert focus["target"] == "body"


def test_offsets_round_half_milliseconds_up(transport, clock):
    recorder = make_recorder(transport, clock)
    clock.advance(2.5)
    assert recorder.extract_event_data("scroll", {})["timestamp"] == 3


@pytest.mark.asyncio
async def test_recorder_listens_on_the_registry_it_is_given(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry) as recorder:
        assert recorder.registry is registry
        registry.dispatch("click", click())
        assert "click" in types(recorder)


@pytest.mark.asyncio
async def test_size_flush_and_timer_flush_keep_order_while_unregistered(transport, clock):
    transport.recording_id = None
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry, batch_size=3) as recorder:
        await recorder.wait_idle()
        for x in (1, 2, 3):
            registry.dispatch("click", click(x=x))
        # The size-triggered delivery is now waiting on a registration retry
        await asyncio.sleep(0)
        registry.dispatch("click", click(x=4))
        assert await recorder.flush() is False
        await recorder.wait_idle()
        assert [e.data["x"] for e in recorder.buffer.peek()] == [1, 2, 3, 4]

        transport.recording_id = "rec-2"
        assert await recorder.flush() is True
        assert await recorder.flush() is True
        delivered = [e["data"]["x"] for batch in transport.sent_to(EVENTS_URL) for e in batch["events"]]
        assert delivered == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_unload_during_inflight_flush_sends_each_event_once(transport, clock):
    registry = ListenerRegistry()
    async with make_recorder(transport, clock, registry=registry) as recorder:
        await recorder.wait_idle()
        registry.dispatch("click", click(x=1))
        registry.dispatch("click", click(x=2))
        transport.gate = asyncio.Event()
        flushing = asyncio.create_task(recorder.flush())
        await asyncio.sleep(0.01)

        registry.dispatch("click", click(x=3))
        registry.dispatch("beforeunload")
        transport.gate.set()
        assert await flushing is True

        [batch] = transport.sent_to(EVENTS_URL)
        assert [e["data"]["x"] for e in batch["events"]] == [1, 2]
        (_, beaconed), (_, end) = transport.beacons
        assert [e["data"]["x"] for e in beaconed["events"]] == [3]
        assert end["metadata"]["events_count"] == 3
        assert len(recorder.buffer) == 0
