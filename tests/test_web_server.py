"""
Tests for the rally-sync web server.
"""

import json
import time
import urllib.error
import urllib.request
from unittest.mock import MagicMock, patch

import pytest

from rally_sync.interfaces.countdown_state import CountdownStatus

PORT = 19877
BASE = f'http://127.0.0.1:{PORT}'


def get(path, timeout=2):
    with urllib.request.urlopen(BASE + path, timeout=timeout) as response:
        return response.status, response.read()


def post(path, payload=None):
    request = urllib.request.Request(
        BASE + path,
        data=json.dumps(payload or {}).encode(),
        headers={'Content-Type': 'application/json'},
        method='POST'
    )
    try:
        with urllib.request.urlopen(request, timeout=2) as response:
            return response.status, json.loads(response.read())
    except urllib.error.HTTPError as e:
        return e.code, json.loads(e.read())


class TestWebServer:
    """Tests for WebServer construction."""

    def test_web_server_initialization(self):
        from rally_sync.web.web_server import WebServer

        server = WebServer(port=9999, bind_address='127.0.0.1')
        assert server.port == 9999
        assert server.bind_address == '127.0.0.1'
        assert server.coordinator is None
        assert server._running is False

    def test_format_sse(self):
        from rally_sync.web.web_server import format_sse

        frame = format_sse('timer', {'status': 'idle'}, event_id=3)

        assert frame == b'id: 3\nevent: timer\ndata: {"status": "idle"}\n\n'

    def test_prometheus_format(self):
        from rally_sync.web.web_server import WebRequestHandler

        coordinator = MagicMock()
        coordinator.get_status.return_value = {
            'state': 'counting',
            'elapsed_seconds': 12.5,
            'total_duration_seconds': 65.0,
            'leaders': 2,
            'viewers_connected': 3,
            'commands_rejected': 1,
            'broadcasts': 4,
            'uptime_seconds': 100.0,
        }

        handler = WebRequestHandler.__new__(WebRequestHandler)
        metrics = handler._format_prometheus_metrics(coordinator.get_status())

        assert 'rally_sync_state 1' in metrics
        assert 'rally_sync_elapsed_seconds 12.500' in metrics
        assert 'rally_sync_viewers_connected 3' in metrics
        assert 'rally_sync_commands_rejected_total 1' in metrics

    def test_send_start_proposes_local_clock(self):
        from rally_sync.viewer import client

        with patch.object(client, 'post_json', return_value=(200, {})) as post_json, \
                patch.object(client.time, 'time', return_value=1234.0):
            client.send_start('http://coordinator:3001/')

        post_json.assert_called_once_with(
            'http://coordinator:3001/api/timer/start', {'start_instant': 1234.0}
        )


class TestWebServerIntegration:
    """Integration tests for WebServer (requires network)."""

    @pytest.fixture
    def stack(self, store, two_phase_roster):
        from rally_sync.engine.coordinator import CountdownCoordinator
        from rally_sync.web.web_server import WebServer

        store.replace_configuration(two_phase_roster)
        coordinator = CountdownCoordinator(store, warmup=10.0)
        server = WebServer(port=PORT, bind_address='127.0.0.1',
                           access_code='sesame', heartbeat_interval=0.2)
        server.set_coordinator(coordinator, store)
        try:
            server.start()
        except OSError as e:
            pytest.skip(f"Cannot bind test port: {e}")

        # Give server time to start
        time.sleep(0.1)

        yield coordinator

        server.stop()

    def test_health_endpoint(self, stack):
        status, body = get('/health')
        assert status == 200
        assert body == b'OK\n'

    def test_start_then_duplicate_start(self, stack):
        status, reply = post('/api/timer/start', {'start_instant': 1000.0})
        assert status == 200
        assert reply['countdown'] == {'status': 'counting', 'start_instant': 1000.0}

        status, reply = post('/api/timer/start', {'start_instant': 2000.0})
        assert status == 409
        assert reply['accepted'] is False
        assert stack.get_state().start_instant == 1000.0

    def test_cancel(self, stack):
        post('/api/timer/start')
        status, reply = post('/api/timer/cancel')

        assert status == 200
        assert reply['countdown'] == {'status': 'idle', 'start_instant': None}
        assert stack.get_state().status == CountdownStatus.IDLE

    def test_invalid_start_instant(self, stack):
        status, reply = post('/api/timer/start', {'start_instant': 'soon'})
        assert status == 400

    @pytest.mark.parametrize('instant', [float('nan'), float('inf'), 'Infinity', '-inf'])
    def test_non_finite_start_instant_rejected(self, stack, instant):
        status, reply = post('/api/timer/start', {'start_instant': instant})

        assert status == 400
        assert stack.get_state().status == CountdownStatus.IDLE

    def test_malformed_roster_shape_rejected(self, stack):
        status, reply = post('/api/roster', {'code': 'sesame', 'phases': [1, 2]})
        assert status == 400

        status, reply = post('/api/roster', {'code': 'sesame', 'phases': [
            {'key': 'main', 'leaders': None}, {'key': 'counter'},
        ]})
        assert status == 400

        # Handler thread survived
        assert get('/health')[0] == 200

    def test_bad_content_length_rejected(self, stack):
        import http.client

        conn = http.client.HTTPConnection('127.0.0.1', PORT, timeout=2)
        try:
            conn.putrequest('POST', '/api/timer/cancel')
            conn.putheader('Content-Length', 'lots')
            conn.endheaders()
            response = conn.getresponse()
            assert response.status == 400
            assert json.loads(response.read())['error'] == 'Invalid Content-Length'
        finally:
            conn.close()

    def test_leader_view_and_not_found(self, stack):
        status, body = get('/api/leaders/counter/b')
        data = json.loads(body)
        assert status == 200
        assert data['timing']['launch'] == 45
        assert data['status']['label'] == 'STANDBY'

        with pytest.raises(urllib.error.HTTPError) as excinfo:
            get('/api/leaders/counter/nobody')
        assert excinfo.value.code == 404
        assert json.loads(excinfo.value.read())['error'] == 'Leader not found'

    def test_roster_edit_requires_access_code(self, stack):
        document = {'phases': [
            {'key': 'main', 'leaders': [{'id': 'a', 'name': 'A', 'travel_duration': 70}]},
            {'key': 'counter', 'offset': 0, 'leaders': []},
        ]}

        status, _ = post('/api/roster', document)
        assert status == 403

        status, reply = post('/api/roster', dict(document, code='sesame'))
        assert status == 200
        assert stack.current_timeline().total_duration == 70

    def test_invalid_roster_rejected(self, stack):
        status, reply = post('/api/roster', {'code': 'sesame', 'phases': [{'key': 'main'}]})
        assert status == 400
        assert 'error' in reply

    def test_timeline_endpoint(self, stack):
        status, body = get('/api/timeline')
        data = json.loads(body)

        assert data['timeline']['total_duration'] == 65
        assert len(data['board']['leaders']) == 2

    def test_metrics_endpoint(self, stack):
        status, body = get('/metrics')
        content = body.decode()

        assert status == 200
        assert 'rally_sync_state 0' in content
        assert 'rally_sync_leaders 2' in content

    def test_event_stream_sends_state_on_connect(self, stack):
        """A viewer connecting mid-countdown is resynchronised immediately."""
        stack.start(1234.5)

        with urllib.request.urlopen(BASE + '/events', timeout=2) as response:
            assert response.headers['Content-Type'] == 'text/event-stream'
            events = []
            event = None
            while len(events) < 2:
                line = response.readline().decode().rstrip('\n')
                if line.startswith('event: '):
                    event = line[len('event: '):]
                elif line.startswith('data: '):
                    events.append((event, json.loads(line[len('data: '):])))

        assert events[0][0] == 'roster'
        assert events[0][1]['timeline']['total_duration'] == 65
        assert events[0][1]['warmup'] == 10.0
        assert events[1] == ('timer', {'status': 'counting', 'start_instant': 1234.5})

    def test_event_stream_delivers_broadcasts(self, stack):
        with urllib.request.urlopen(BASE + '/events', timeout=2) as response:
            statuses = []
            while len(statuses) < 2:
                line = response.readline().decode()
                if line.startswith('data: ') and '"status"' in line:
                    statuses.append(json.loads(line[len('data: '):])['status'])
                    if len(statuses) == 1:
                        stack.start(99.0)

        assert statuses == ['idle', 'counting']
