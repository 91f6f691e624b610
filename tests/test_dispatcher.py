"""Frame classification, message extraction and the login frame digest."""
import hashlib
import json

import pytest

from chatrelay.core.realtime import protocol
from chatrelay.core.realtime.dispatcher import EventDispatcher, FrameKind, extract_room_message


def _changed(args, collection="stream-room-messages"):
    return {
        "msg": "changed",
        "collection": collection,
        "id": "id",
        "fields": {"eventName": "GENERAL", "args": args},
    }


def _recording_dispatcher():
    calls = {"ack": [], "login": [], "ping": [], "message": [], "joined": []}
    dispatcher = EventDispatcher(
        on_peer_ack=calls["ack"].append,
        on_login_result=calls["login"].append,
        on_keepalive_probe=calls["ping"].append,
        on_room_message=calls["message"].append,
        on_user_joined=calls["joined"].append,
    )
    return dispatcher, calls


@pytest.mark.parametrize(
    "frame, kind",
    [
        ({"msg": "connected", "session": "s"}, FrameKind.PEER_ACK),
        ({"msg": "result", "id": "login"}, FrameKind.METHOD_RESULT),
        ({"msg": "changed", "collection": "x"}, FrameKind.DATA_CHANGED),
        ({"msg": "ping"}, FrameKind.KEEPALIVE_PROBE),
        ({"msg": "pong"}, FrameKind.KEEPALIVE_ACK),
        ({"msg": "added"}, FrameKind.UNRECOGNIZED),
        ({"server_id": "0"}, FrameKind.UNRECOGNIZED),
    ],
)
def test_classify(frame, kind):
    assert EventDispatcher.classify(frame) is kind


def test_room_message_fields_extracted_from_first_arg():
    dispatcher, calls = _recording_dispatcher()
    frame = _changed([
        {"_id": "m1", "rid": "GENERAL", "msg": "hello there", "u": {"_id": "u9", "username": "bob"}},
        {"ignored": True},
    ])
    assert dispatcher.dispatch(frame) is FrameKind.DATA_CHANGED
    assert len(calls["message"]) == 1
    message = calls["message"][0]
    assert (message.body, message.sender, message.room_id, message.message_id) == (
        "hello there",
        "bob",
        "GENERAL",
        "m1",
    )


@pytest.mark.parametrize("args", [[], None, ["not-a-dict"], [{"msg": "no room"}]])
def test_changed_without_usable_args_is_ignored(args):
    dispatcher, calls = _recording_dispatcher()
    frame = _changed(args)
    if args is None:
        del frame["fields"]["args"]
    dispatcher.dispatch(frame)
    assert calls["message"] == []
    assert calls["joined"] == []


def test_changed_on_other_collection_is_ignored():
    dispatcher, calls = _recording_dispatcher()
    dispatcher.dispatch(_changed([{"rid": "r", "msg": "x", "u": {"username": "a"}}], collection="stream-notify-room"))
    assert calls["message"] == []


def test_user_stream_message_is_routed_as_room_message():
    dispatcher, calls = _recording_dispatcher()
    frame = _changed(
        [{"rid": "dm-1", "msg": "psst", "u": {"username": "carol"}}],
        collection="stream-notify-user",
    )
    dispatcher.dispatch(frame)
    assert [m.room_id for m in calls["message"]] == ["dm-1"]


def test_user_joined_goes_to_join_handler():
    dispatcher, calls = _recording_dispatcher()
    dispatcher.dispatch(_changed([{"rid": "GENERAL", "t": "uj", "msg": "dave", "u": {"username": "dave"}}]))
    assert calls["message"] == []
    assert [m.sender for m in calls["joined"]] == ["dave"]


def test_login_result_routed_by_fixed_id_only():
    dispatcher, calls = _recording_dispatcher()
    dispatcher.dispatch({"msg": "result", "id": "login", "result": {"token": "t", "id": "u"}})
    dispatcher.dispatch({"msg": "result", "id": "42", "result": {}})
    assert len(calls["login"]) == 1


def test_peer_ack_without_session_is_dropped():
    dispatcher, calls = _recording_dispatcher()
    dispatcher.dispatch({"msg": "connected"})
    dispatcher.dispatch({"msg": "connected", "session": "abc"})
    assert calls["ack"] == ["abc"]


def test_extract_room_message_defaults_missing_sender():
    message = extract_room_message(_changed([{"rid": "r1", "msg": "hi"}]))
    assert message.sender == ""
    assert message.body == "hi"


def test_login_frame_carries_digest_not_password():
    encoded = protocol.encode(protocol.login_frame("alice", "secret"))
    assert "secret" not in encoded
    decoded = protocol.decode(encoded)
    params = decoded["params"][0]
    assert params["user"] == {"username": "alice"}
    assert params["password"] == {
        "digest": hashlib.sha256(b"secret").hexdigest(),
        "algorithm": "sha-256",
    }
    assert decoded["id"] == protocol.LOGIN_REQUEST_ID


def test_decode_rejects_non_objects():
    with pytest.raises(protocol.ProtocolError):
        protocol.decode("[]")
    with pytest.raises(protocol.ProtocolError):
        protocol.decode("nope")
    assert protocol.decode(json.dumps({"msg": "ping"}).encode()) == {"msg": "ping"}
