"""Tests for IPC message and payload types."""

import uuid

import pytest

from vc_status.ipc.types import (
    Activity,
    AuthenticatePayload,
    ChannelSelectPayload,
    Command,
    ErrorPayload,
    Event,
    Message,
    MessageDecodeError,
    SelectedChannelPayload,
    UnknownMessageError,
    VoiceStatePayload,
    build_command,
    decode_payload,
    new_nonce,
)


class TestBuildCommand:
    def test_nonce_is_uuid4(self):
        nonce = new_nonce()
        assert uuid.UUID(nonce).version == 4

    def test_fresh_nonce_per_command(self):
        assert build_command(Command.SUBSCRIBE)["nonce"] != build_command(Command.SUBSCRIBE)["nonce"]

    def test_optional_fields(self):
        assert set(build_command(Command.GET_SELECTED_VOICE_CHANNEL)) == {"nonce", "cmd"}
        payload = build_command(Command.SUBSCRIBE, {}, evt=Event.VOICE_CHANNEL_SELECT)
        assert payload["evt"] == "VOICE_CHANNEL_SELECT"
        assert payload["args"] == {}


class TestMessage:
    def test_reply(self):
        message = Message.from_dict({"cmd": "AUTHENTICATE", "nonce": "n", "evt": None, "data": {}})
        assert message.is_reply
        assert not message.is_event
        assert message.cmd == Command.AUTHENTICATE

    def test_event(self):
        message = Message.from_dict({"cmd": "DISPATCH", "evt": "SPEAKING_START", "data": {}})
        assert message.is_event
        assert not message.is_reply
        assert message.nonce is None

    def test_error_event(self):
        message = Message.from_dict({"cmd": "AUTHORIZE", "evt": "ERROR", "nonce": "n"})
        assert message.is_error

    def test_unknown_command(self):
        with pytest.raises(UnknownMessageError) as exc_info:
            Message.from_dict({"cmd": "CAPTURE_SHORTCUT"})
        assert exc_info.value.raw == {"cmd": "CAPTURE_SHORTCUT"}

    def test_unknown_event(self):
        with pytest.raises(UnknownMessageError):
            Message.from_dict({"cmd": "DISPATCH", "evt": "GUILD_STATUS"})

    @pytest.mark.parametrize("raw", [None, [], "text", {}, {"cmd": 5}])
    def test_malformed(self, raw):
        with pytest.raises(MessageDecodeError):
            Message.from_dict(raw)

    def test_to_dict_omits_unset_fields(self):
        message = Message(cmd=Command.DISPATCH, evt=Event.READY)
        assert message.to_dict() == {"cmd": "DISPATCH", "evt": "READY"}


class TestPayloads:
    def test_authenticate_user_id(self):
        payload = AuthenticatePayload.from_data({"user": {"id": 42, "username": "me"}})
        assert payload.user_id == "42"
        assert payload.username == "me"

    def test_authenticate_without_user(self):
        with pytest.raises(MessageDecodeError):
            AuthenticatePayload.from_data({"application": {}})

    def test_voice_state(self):
        state = VoiceStatePayload.from_data({
            "nick": "Al",
            "user": {"id": "200", "username": "alice", "avatar": "abc"},
            "voice_state": {"mute": False, "deaf": True, "self_mute": True, "self_deaf": False},
        })
        assert state.user_id == "200"
        assert state.nick == "Al"
        assert state.avatar == "abc"
        assert state.deaf is True
        assert state.self_mute is True

    def test_selected_channel_null(self):
        channel = SelectedChannelPayload.from_data(None)
        assert not channel.in_channel
        assert channel.voice_states == []

    def test_selected_channel(self):
        channel = SelectedChannelPayload.from_data({
            "id": "123", "name": "General", "guild_id": "9",
            "voice_states": [{"user": {"id": "1"}}],
        })
        assert channel.in_channel
        assert channel.channel_id == "123"
        assert [s.user_id for s in channel.voice_states] == ["1"]

    def test_selected_channel_bad_states(self):
        with pytest.raises(MessageDecodeError):
            SelectedChannelPayload.from_data({"id": "123", "voice_states": "nope"})

    def test_channel_select_null(self):
        assert ChannelSelectPayload.from_data({"channel_id": None}).channel_id is None

    def test_error_payload_tolerates_missing_fields(self):
        assert ErrorPayload.from_data(None) == ErrorPayload()

    def test_decode_payload_dispatches_on_event(self):
        message = Message.from_dict({
            "cmd": "DISPATCH", "evt": "VOICE_SETTINGS_UPDATE", "data": {"mute": True},
        })
        settings = decode_payload(message)
        assert settings.mute is True
        assert settings.deaf is False

    def test_decode_payload_passes_through_untyped(self):
        message = Message.from_dict({"cmd": "SET_ACTIVITY", "nonce": "n", "data": {"x": 1}})
        assert decode_payload(message) == {"x": 1}


class TestActivity:
    def test_to_dict_omits_unset(self):
        activity = Activity(details="Editing", state="main.py")
        assert activity.to_dict() == {"type": 0, "details": "Editing", "state": "main.py"}

    def test_from_dict_ignores_unknown_keys(self):
        activity = Activity.from_dict({"name": "Game", "type": 2, "flags": 1})
        assert activity.name == "Game"
        assert activity.type == 2
