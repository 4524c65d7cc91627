"""
Tests for the SSE parser and event dispatch into a tick loop.
"""

import json

from rally_sync.interfaces.countdown_state import CountdownStatus


def sse(event, payload):
    return [
        f"event: {event}\n".encode(),
        f"data: {json.dumps(payload)}\n".encode(),
        b"\n",
    ]


class TestParseEventStream:

    def test_named_events(self):
        from rally_sync.viewer.client import parse_event_stream

        lines = sse('timer', {'status': 'idle', 'start_instant': None}) + sse('roster', {'roster': {}})

        events = list(parse_event_stream(lines))

        assert [e for e, _ in events] == ['timer', 'roster']
        assert events[0][1]['status'] == 'idle'

    def test_heartbeats_and_ids_ignored(self):
        from rally_sync.viewer.client import parse_event_stream

        lines = [b": keepalive\n", b"\n", b"id: 7\n"] + sse('timer', {'status': 'counting', 'start_instant': 5.0})

        events = list(parse_event_stream(lines))

        assert events == [('timer', {'status': 'counting', 'start_instant': 5.0})]

    def test_malformed_payload_skipped(self):
        from rally_sync.viewer.client import parse_event_stream

        lines = [b"event: timer\n", b"data: {oops\n", b"\n"] + sse('timer', {'status': 'idle'})

        events = list(parse_event_stream(lines))

        assert len(events) == 1

    def test_invalid_utf8_does_not_raise(self):
        from rally_sync.viewer.client import parse_event_stream

        lines = [b"event: timer\n", b"data: \xff\xfe{\n", b"\n"] + sse('timer', {'status': 'idle'})

        events = list(parse_event_stream(lines))

        assert events == [('timer', {'status': 'idle'})]


class TestDispatch:

    def test_stream_drives_tick_loop(self, two_phase_roster, clock):
        from rally_sync.viewer.client import EventStreamClient
        from rally_sync.viewer.tick_loop import ViewerTickLoop

        loop = ViewerTickLoop(warmup=10.0, clock=clock)
        client = EventStreamClient('http://127.0.0.1:1', loop)

        lines = (
            sse('roster', {'roster': two_phase_roster.to_dict(), 'timeline': {}})
            + sse('timer', {'status': 'counting', 'start_instant': clock() - 52})
        )
        client.consume(lines)

        assert loop.state.status == CountdownStatus.COUNTING
        assert loop.leader_view('counter', 'b').label.value == "GET READY"
        assert client.stats['events'] == 2

    def test_cancel_event_returns_to_idle(self, clock):
        from rally_sync.viewer.client import EventStreamClient
        from rally_sync.viewer.tick_loop import ViewerTickLoop

        loop = ViewerTickLoop(clock=clock)
        client = EventStreamClient('http://127.0.0.1:1', loop)

        client.consume(
            sse('timer', {'status': 'counting', 'start_instant': clock()})
            + sse('timer', {'status': 'idle', 'start_instant': None})
        )

        assert loop.state.status == CountdownStatus.IDLE
        assert loop.elapsed() == 0

    def test_invalid_payload_does_not_stop_stream(self, clock):
        from rally_sync.viewer.client import EventStreamClient
        from rally_sync.viewer.tick_loop import ViewerTickLoop

        loop = ViewerTickLoop(clock=clock)
        client = EventStreamClient('http://127.0.0.1:1', loop)

        client.consume(
            sse('timer', {'status': 'paused'})
            + sse('timer', {'status': 'counting', 'start_instant': clock()})
        )

        assert loop.state.status == CountdownStatus.COUNTING

    def test_roster_event_overrides_local_warmup(self, two_phase_roster, clock):
        """A viewer started with the wrong warmup adopts the coordinator's."""
        from rally_sync.viewer.client import EventStreamClient
        from rally_sync.viewer.tick_loop import ViewerTickLoop

        loop = ViewerTickLoop(warmup=10.0, clock=clock)
        client = EventStreamClient('http://127.0.0.1:1', loop)

        client.consume(
            sse('roster', {'roster': two_phase_roster.to_dict(), 'timeline': {}, 'warmup': 20.0})
            + sse('timer', {'status': 'counting', 'start_instant': clock() - 62})
        )

        assert loop.warmup == 20.0
        # counter launch is 45s after phase 0; 20 + 45 - 62 = 3s to go
        row = loop.leader_view('counter', 'b')
        assert row.label.value == "GET READY"
        assert row.launch_display == "0:03"

    def test_non_object_payload_is_ignored(self, clock):
        from rally_sync.viewer.client import EventStreamClient
        from rally_sync.viewer.tick_loop import ViewerTickLoop

        loop = ViewerTickLoop(clock=clock)
        client = EventStreamClient('http://127.0.0.1:1', loop)

        client.consume(
            sse('timer', [1, 2]) + sse('roster', {'roster': {'phases': []}, 'warmup': 'soon'})
            + sse('timer', {'status': 'counting', 'start_instant': clock()})
        )

        assert loop.state.status == CountdownStatus.COUNTING
        assert loop.warmup == 10.0
