"""Tests for configuration helpers."""

import pytest

from chatline.common.config import connect_host


@pytest.mark.parametrize(
    "bind_host, expected",
    [
        ("0.0.0.0", "127.0.0.1"),
        ("", "127.0.0.1"),
        ("::", "::1"),
        ("192.168.1.20", "192.168.1.20"),
        ("chat.example.com", "chat.example.com"),
    ],
)
def test_connect_host_maps_wildcards_to_loopback(bind_host, expected):
    assert connect_host(bind_host) == expected
