# tests/test_envelope.py
from __future__ import annotations

import pytest

from stream_monitor.datafeed.envelope import (
    field_bool, field_float, field_int, field_levels, field_str, parse_envelope,
)
from stream_monitor.errors import EnvelopeError, StreamMonitorError
from stream_monitor.timefmt import parse_utc_string
from stream_monitor.types import MessageType


def test_parse_valid_envelope():
    env = parse_envelope(b'{"type": "heartbeat", "data": {"queue_size": 3}, "timestamp": "2024-01-01T00:00:00Z"}')

    assert env.type == "heartbeat"
    assert env.kind is MessageType.HEARTBEAT
    assert env.data == {"queue_size": 3}
    assert env.timestamp == "2024-01-01T00:00:00Z"


def test_parse_accepts_str_frames():
    assert parse_envelope('{"type": "keepalive"}').kind is MessageType.KEEPALIVE


def test_missing_data_and_timestamp_are_filled():
    env = parse_envelope(b'{"type": "keepalive", "data": null}')

    assert env.data == {}
    # filled with the receive time
    assert parse_utc_string(env.timestamp).tzinfo is not None


def test_unknown_type_is_preserved():
    env = parse_envelope(b'{"type": "brand_new", "data": {}}')
    assert env.type == "brand_new"
    assert env.kind is MessageType.UNKNOWN


@pytest.mark.parametrize('raw', [
    b'{not json',
    b'[1, 2]',
    b'"heartbeat"',
    b'{"data": {}}',
    b'{"type": 5}',
    b'{"type": ""}',
    b'{"type": "heartbeat", "data": [1]}',
])
def test_invalid_envelopes_raise(raw):
    with pytest.raises(EnvelopeError):
        parse_envelope(raw)


def test_envelope_error_is_a_stream_monitor_error():
    assert issubclass(EnvelopeError, StreamMonitorError)


def test_numeric_fields_never_return_none():
    data = {'a': "12.5", 'b': 7, 'c': True, 'd': "abc", 'e': None, 'f': "nan", 'g': [1]}

    assert field_float(data, 'a') == 12.5
    assert field_float(data, 'b') == 7.0
    assert field_float(data, 'c') == 0.0
    assert field_float(data, 'd') == 0.0
    assert field_float(data, 'e') == 0.0
    assert field_float(data, 'f') == 0.0
    assert field_float(data, 'g') == 0.0
    assert field_float(data, 'missing', default=1.5) == 1.5
    assert field_int(data, 'a') == 12
    assert field_int(data, 'd') == 0


def test_bool_and_str_fields():
    data = {'t': True, 's': "true", 'n': 1, 'z': 0, 'x': "nope", 'empty': ""}

    assert field_bool(data, 't') is True
    assert field_bool(data, 's') is True
    assert field_bool(data, 'n') is True
    assert field_bool(data, 'z') is False
    assert field_bool(data, 'x') is False
    assert field_bool(data, 'missing') is False
    assert field_str(data, 'empty') == "unknown"
    assert field_str(data, 'missing', default="") == ""
    assert field_str(data, 'n') == "1"


def test_levels_are_parsed_sorted_and_filtered():
    data = {
        'bids': [["99.5", "1"], [99.9, 2], ["bad", "1"], ["99.7"], "junk", [99.8, "3"]],
        'asks': [[100.3, 1], ["100.1", "2"]],
    }

    bids = field_levels(data, 'bids', descending=True)
    asks = field_levels(data, 'asks', descending=False)

    assert [lvl.price for lvl in bids] == [99.9, 99.8, 99.5]
    assert bids[1].quantity == 3.0
    assert [lvl.price for lvl in asks] == [100.1, 100.3]
    assert field_levels({'bids': "nope"}, 'bids', descending=True) == ()
    assert field_levels({}, 'asks', descending=False) == ()
