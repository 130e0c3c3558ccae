"""Tests for the terminal client's input translation and rendering."""

import pytest

from chatline.client.client import ChatClient, translate_input


@pytest.mark.parametrize(
    "typed, expected",
    [
        ("hello everyone", "MSG hello everyone"),
        ("  padded  ", "MSG padded"),
        ("/w bob see you", "WHISPER bob see you"),
        ("/whisper bob hi", "WHISPER bob hi"),
        ("/W bob Hi", "WHISPER bob Hi"),
        ("/quit", "LOGOUT"),
        ("/QUIT", "LOGOUT"),
        ("/logout", "LOGOUT"),
        ("", None),
        ("   ", None),
    ],
)
def test_translate_input(typed, expected):
    assert translate_input(typed) == expected


def test_render_tracks_login_and_user_list():
    client = ChatClient("127.0.0.1", 0)

    assert client.render("SUBMITNAME") is None
    assert client.render("NAMEACCEPTED alice") == "[SYSTEM] Login successful: alice"
    assert client.user_id == "alice"

    assert client.render("USERLIST alice,bob") == "[Online] alice, bob"
    assert client.online_users == ["alice", "bob"]
    assert client.render("USERLIST ") == "[Online] (nobody)"
    assert client.online_users == []


def test_render_messages():
    client = ChatClient("127.0.0.1", 0)
    assert client.render("MESSAGE bob: hi") == "bob: hi"
    assert client.render("WHISPERFROM bob: psst") == "[Whisper] bob: psst"
    assert client.render("SYSTEM bob has left the chat.") == "[SYSTEM] bob has left the chat."
    assert client.render("REGISTERFAIL This ID is already in use.") == (
        "[!] Registration failed: This ID is already in use."
    )
    assert client.render("IDTAKEN") == "[SYSTEM] The requested ID is already taken."
    assert client.render("something else") == "something else"
