# tests/test_api.py

import pytest

from ludo_server import create_app

from conftest import ALICE


def address(n):
    return "0x" + format(n, "040x")


@pytest.fixture(scope="module")
def app_and_socketio(tmp_path_factory):
    base = tmp_path_factory.mktemp("ludo")
    return create_app({
        'TESTING': True,
        'SOCKETIO_ASYNC_MODE': 'threading',
        'RATELIMIT_ENABLED': False,
        'DB_FILE': str(base / "rooms.db"),
        'LOG_FILE': str(base / "application.log"),
        'STATS_LOG_FILE': str(base / "match_stats.log"),
        'PAYOUT_SIGNING_KEY': 'test-signing-key',
    })


@pytest.fixture
def app(app_and_socketio):
    return app_and_socketio[0]


@pytest.fixture
def client(app):
    return app.test_client()


def create(client, creator, **extra):
    return client.post('/api/rooms', json={'address': creator, **extra})


class TestRoomRoutes:

    def test_ping(self, client):
        resp = client.get('/api/ping')
        assert resp.status_code == 200
        assert resp.get_json()['message'] == 'pong'

    def test_create_room(self, client):
        resp = create(client, address(1), stake=100, maxPlayers=3)
        body = resp.get_json()

        assert resp.status_code == 201
        assert body['status'] == 'success'
        assert body['room']['maxPlayers'] == 3
        assert body['room']['status'] == 'WAITING'
        assert body['playerIndex'] == 0
        assert body['access_token']

    def test_create_without_body(self, client):
        resp = client.post('/api/rooms')
        assert resp.status_code == 400
        assert resp.get_json()['code'] == 'GENERIC_BAD_REQUEST'

    def test_create_with_bad_address(self, client):
        resp = create(client, '0xnothex')
        assert resp.status_code == 400
        assert resp.get_json()['code'] == 'ROOM_INVALID_ADDRESS'

    def test_creator_already_in_room(self, client):
        create(client, address(2))
        resp = create(client, address(2))

        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'ROOM_INVALID_STATE'

    def test_join_and_snapshot(self, client):
        room_id = create(client, address(3)).get_json()['room']['roomId']

        resp = client.post(f'/api/rooms/{room_id}/join', json={'address': address(4), 'name': 'bob'})
        assert resp.status_code == 200
        assert resp.get_json()['playerIndex'] == 1

        snapshot = client.get(f'/api/rooms/{room_id}').get_json()
        assert [p['name'] for p in snapshot['players']] == [address(3), 'bob']
        assert snapshot['state'] is None

    def test_join_full_room(self, client):
        room_id = create(client, address(5)).get_json()['room']['roomId']
        client.post(f'/api/rooms/{room_id}/join', json={'address': address(6)})

        resp = client.post(f'/api/rooms/{room_id}/join', json={'address': address(7)})
        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'ROOM_FULL'

    def test_unknown_room(self, client):
        resp = client.get('/api/rooms/deadbeef')
        assert resp.status_code == 404
        assert resp.get_json()['code'] == 'ROOM_NOT_FOUND'

    def test_payout_requires_token(self, client):
        resp = client.post('/api/rooms/deadbeef/payout')
        assert resp.status_code == 401

    def test_payout_before_finish(self, client):
        body = create(client, address(8), stake=10).get_json()
        headers = {'Authorization': f"Bearer {body['access_token']}"}

        resp = client.post(f"/api/rooms/{body['room']['roomId']}/payout", headers=headers)

        assert resp.status_code == 409
        assert resp.get_json()['code'] == 'ROOM_INVALID_STATE'


class TestSocketAuth:

    def test_connect_with_token(self, app_and_socketio, client):
        app, socketio = app_and_socketio
        token = create(client, address(9)).get_json()['access_token']

        sio = socketio.test_client(app, auth={'token': token})

        received = sio.get_received()
        assert received[0]['name'] == 'authenticated'
        assert received[0]['args'][0]['address'] == address(9)
        assert received[0]['args'][0]['activeRoomId']
        sio.disconnect()

    def test_connect_without_token(self, app_and_socketio):
        app, socketio = app_and_socketio

        sio = socketio.test_client(app)

        assert not sio.is_connected()

    def test_payload_address_must_match_token(self, app_and_socketio, client):
        """Событие с чужим адресом отклоняется до обращения к комнате"""
        app, socketio = app_and_socketio
        body = create(client, address(10)).get_json()
        sio = socketio.test_client(app, auth={'token': body['access_token']})
        sio.get_received()

        sio.emit('join_match', {'roomId': body['room']['roomId'], 'playerAddress': ALICE})

        received = sio.get_received()
        assert received[0]['name'] == 'game_error'
        assert received[0]['args'][0]['message'] == 'Address does not match authenticated player.'
        sio.disconnect()

    def test_invalid_payload(self, app_and_socketio, client):
        app, socketio = app_and_socketio
        token = create(client, address(11)).get_json()['access_token']
        sio = socketio.test_client(app, auth={'token': token})
        sio.get_received()

        sio.emit('move_token', {'playerAddress': address(11), 'tokenIndex': 9})

        received = sio.get_received()
        assert received[0]['args'][0]['message'] == 'Invalid payload.'
        sio.disconnect()
