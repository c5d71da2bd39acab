import logging

import pytest

from serverpack.utils.logging import configure_root, format_megabytes, level_from_env, parse_level


@pytest.mark.parametrize(
    "raw, expected",
    [("debug", logging.DEBUG), ("WARNING", logging.WARNING), ("15", 15), ("", None), ("chatty", None)],
)
def test_parse_level(raw, expected):
    assert parse_level(raw) == expected


def test_explicit_level_wins_over_debug_flag():
    env = {"SERVERPACK_LOG_LEVEL": "error", "SERVERPACK_DEBUG": "1"}
    assert level_from_env(env) == logging.ERROR


def test_debug_flag_enables_debug():
    assert level_from_env({"SERVERPACK_DEBUG": "yes"}) == logging.DEBUG
    assert level_from_env({"SERVERPACK_DEBUG": "0"}) is None


def test_configure_root_quiets_transport_loggers():
    root = logging.getLogger()
    previous = root.level
    try:
        assert configure_root(env={"LOG_LEVEL": "info"}) == logging.INFO
        assert root.level == logging.INFO
        assert logging.getLogger("urllib3").level == logging.WARNING
    finally:
        root.setLevel(previous)
        for name in ("urllib3", "requests"):
            logging.getLogger(name).setLevel(logging.NOTSET)


def test_format_megabytes():
    assert format_megabytes(5 * 1024 * 1024 + 512 * 1024) == "5.50 MB"
