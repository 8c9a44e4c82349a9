import math
import pytest
from structured import TimestampField, TimestampRecord
from utils import convert_value_to_string, flatten_timestamp_record, is_scalar_empty, quote

@pytest.mark.parametrize("text, expected", [
    ("boo", '"boo"'),
    ("", '""'),
    ('say "hi"', '"say \\"hi\\""'),
    ("2018-10-11T03:23:39−09:00", '"2018-10-11T03:23:39−09:00"'),
])
def test_quote(text, expected):
    assert quote(text) == expected

@pytest.mark.parametrize("value, expected", [
    (None, True),
    ("", True),
    ("-", True),
    (math.nan, True),
    ("2018", False),
    (0, False),
])
def test_is_scalar_empty(value, expected):
    assert is_scalar_empty(value) == expected

@pytest.mark.parametrize("value, expected", [
    ("2018-10-11", "2018-10-11"),
    (2018, "2018"),
    (None, None),
    (["a"], '["a"]'),
])
def test_convert_value_to_string(value, expected):
    assert convert_value_to_string(value) == expected

def test_flatten_timestamp_record():
    record = TimestampRecord(
        record_id="r1",
        fields=[
            TimestampField(name=" created ", raw="2018", canonical="2018-01-01T00:00:00+00:00"),
            TimestampField(name="updated", raw="boo", error="bad"),
            TimestampField(name="updated", raw="2019", canonical="2019-01-01T00:00:00+00:00"),
            TimestampField(name="  "),
        ],
    )

    assert flatten_timestamp_record(record) == {
        "record id": "r1",
        "created": "2018",
        "created canonical": "2018-01-01T00:00:00+00:00",
        "created error": None,
        # last one wins
        "updated": "2019",
        "updated canonical": "2019-01-01T00:00:00+00:00",
        "updated error": None,
    }

    assert flatten_timestamp_record(record, include_raw=False) == {
        "record id": "r1",
        "created canonical": "2018-01-01T00:00:00+00:00",
        "created error": None,
        "updated canonical": "2019-01-01T00:00:00+00:00",
        "updated error": None,
    }

def test_flatten_empty_record():
    assert flatten_timestamp_record(None) == {}
    assert flatten_timestamp_record(TimestampRecord(fields=[])) == {}
