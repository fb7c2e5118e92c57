# tests/test_config.py
import pytest

from util.config import STUN_PORT, IceConfig, parse_server


@pytest.mark.parametrize("value, expected", [
    ("stun.example.org", ("stun.example.org", STUN_PORT)),
    ("stun.example.org:19302", ("stun.example.org", 19302)),
    ("  10.0.0.1:3479 ", ("10.0.0.1", 3479)),
    ("[2001:db8::1]:5000", ("2001:db8::1", 5000)),
    ("[2001:db8::1]", ("2001:db8::1", STUN_PORT)),
    ("2001:db8::1", ("2001:db8::1", STUN_PORT)),
])
def test_parse_server(value, expected):
    assert parse_server(value) == expected


@pytest.mark.parametrize("value", ["", "host:abc", "host:0", "host:70000", "[::1", "[::1]x"])
def test_parse_server_rejects(value):
    with pytest.raises(ValueError):
        parse_server(value)


def test_defaults_are_valid():
    config = IceConfig()
    assert config.validate() is config
    assert config.comp_cnt == 1
    assert config.stun_server is None


@pytest.mark.parametrize("field, value", [
    ("comp_cnt", 0),
    ("comp_cnt", 9),
    ("negotiation_timeout_ms", 0),
    ("tick_ms", -1),
    ("max_io_events", 0),
])
def test_validate_rejects(field, value):
    with pytest.raises(ValueError):
        IceConfig(**{field: value}).validate()


def test_turn_settings_become_aioice_arguments():
    config = IceConfig(turn_server=("turn.example.org", 3478), turn_username="u", turn_password="p").validate()
    assert config.turn_kwargs() == {
        "turn_server": ("turn.example.org", 3478),
        "turn_username": "u",
        "turn_password": "p",
        "turn_transport": "udp",
    }
    config.turn_tcp = True
    assert config.turn_kwargs()["turn_transport"] == "tcp"
    assert IceConfig().turn_kwargs() == {}


@pytest.mark.parametrize("kwargs", [
    {"turn_server": ("turn.example.org", 3478)},
    {"turn_server": ("turn.example.org", 3478), "turn_username": "u"},
    {"turn_username": "u", "turn_password": "p"},
    {"turn_tcp": True},
])
def test_incomplete_turn_settings_are_rejected(kwargs):
    with pytest.raises(ValueError, match="TURN"):
        IceConfig(**kwargs).validate()
