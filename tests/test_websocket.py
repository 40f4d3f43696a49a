import pytest
from starlette.websockets import WebSocketDisconnect


def join(ws, room):
    ws.send_json({"event": "join-room", "data": room})
    return ws.receive_json()


class TestHandshake:

    def test_missing_token_is_refused(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws"):
                pass

        assert exc_info.value.code == 1008
        assert exc_info.value.reason == "unauthorized"

    def test_invalid_token_is_refused(self, client, relay):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws?token=not-a-token"):
                pass

        assert exc_info.value.code == 1008
        assert relay.connection_count == 0

    def test_expired_token_reports_expiry(self, client, make_token):
        token = make_token(ttl_seconds=10, now=1_000)

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws?token={token}"):
                pass

        assert exc_info.value.reason == "jwt_expired"

    def test_token_from_authorization_header(self, client, make_token):
        headers = {"Authorization": f"Bearer {make_token()}"}

        with client.websocket_connect("/ws", headers=headers) as ws:
            ack = join(ws, "room42")

        assert ack == {"event": "room-joined", "data": {"room": "room42", "members": 1}}


class TestSignaling:

    def test_offer_is_relayed_to_peer_but_not_echoed(self, client, make_token):
        offer = {"type": "offer", "sdp": "v=0 o=- 46117317 2 IN IP4 127.0.0.1"}
        answer = {"type": "answer", "sdp": "v=0 o=- 12345 2 IN IP4 127.0.0.1"}

        with client.websocket_connect(f"/ws?token={make_token('a', 'alice')}") as ws_a, \
                client.websocket_connect(f"/ws?token={make_token('b', 'bob')}") as ws_b:
            join(ws_a, "room42")
            assert join(ws_b, "room42")["data"]["members"] == 2

            ws_a.send_json({"event": "webrtc-signal", "data": offer})
            assert ws_b.receive_json() == {"event": "webrtc-signal", "data": offer}

            # A's next frame is B's answer, so A never got its own offer back
            ws_b.send_json({"event": "webrtc-signal", "data": answer})
            assert ws_a.receive_json() == {"event": "webrtc-signal", "data": answer}

    def test_disconnect_cleans_up_channels(self, client, relay, make_token):
        with client.websocket_connect(f"/ws?token={make_token('a')}") as ws_a:
            join(ws_a, "room42")
            assert relay.channel_names() == ["room42"]

        assert relay.channel_names() == []
        assert relay.connection_count == 0

    def test_late_joiner_alone_in_room(self, client, relay, make_token):
        with client.websocket_connect(f"/ws?token={make_token('a')}") as ws_a:
            join(ws_a, "room42")

        with client.websocket_connect(f"/ws?token={make_token('b')}") as ws_b:
            ack = join(ws_b, "room42")
            ws_b.send_json({"event": "webrtc-signal", "data": {"type": "offer"}})
            # Still connected and served after a relay with no recipients
            assert join(ws_b, "room7")["data"] == {"room": "room7", "members": 1}

        assert ack["data"]["members"] == 1

    def test_malformed_frames_are_ignored(self, client, make_token):
        with client.websocket_connect(f"/ws?token={make_token()}") as ws:
            ws.send_text("not json")
            ws.send_json(["join-room", "room42"])
            ws.send_json({"data": "room42"})
            ack = join(ws, "room42")

        assert ack["event"] == "room-joined"

    def test_binary_frames_are_ignored(self, client, relay, make_token):
        with client.websocket_connect(f"/ws?token={make_token()}") as ws:
            ws.send_bytes(b"\x00\x01")
            ack = join(ws, "room42")

        assert ack["event"] == "room-joined"
        assert relay.connection_count == 0


class FailingAcceptSocket:
    headers = {}

    def __init__(self):
        self.closed_with = None

    async def accept(self):
        raise RuntimeError("client went away during handshake")

    async def close(self, code=1000, reason=None):
        self.closed_with = code


def signaling_endpoint(app):
    return next(route.endpoint for route in app.routes if getattr(route, "path", None) == "/ws")


class TestHandshakeFailure:

    @pytest.mark.asyncio
    async def test_failed_accept_releases_connection(self, app, relay, make_token):
        socket = FailingAcceptSocket()

        await signaling_endpoint(app)(socket, token=make_token())

        assert relay.connection_count == 0
        assert socket.closed_with == 1011
