from datetime import datetime, timedelta

import pytest

from brave.errors import ValidationError
from brave.UTILS.formatting import format_age, format_byte_count_si, parse_size
from brave.UTILS.host_user import last_segment


def test_format_byte_count_si():
    assert format_byte_count_si(999) == "999B"
    assert format_byte_count_si(1500) == "1.5kB"
    assert format_byte_count_si(512 * 10**6) == "512.0MB"
    assert format_byte_count_si(4 * 10**9) == "4.0GB"


@pytest.mark.parametrize("quantity,expected", [
    ("512MB", 512 * 10**6),
    ("4G", 4 * 10**9),
    ("2GiB", 2 * 1024**3),
    ("1.5kB", 1500),
    ("2048", 2048),
])
def test_parse_size(quantity, expected):
    assert parse_size(quantity) == expected


@pytest.mark.parametrize("quantity", ["", "lots", "5XB", "iB", "-1GB"])
def test_parse_size_rejects_garbage(quantity):
    with pytest.raises(ValidationError):
        parse_size(quantity)


def test_format_age_buckets():
    now = datetime(2024, 5, 10, 12, 0)
    assert format_age(now - timedelta(hours=23), now) == "just now"
    assert format_age(now - timedelta(days=1, hours=2), now) == "1 day ago"
    assert format_age(now - timedelta(days=9), now) == "9 days ago"


def test_last_segment_of_sid():
    assert last_segment("S-1-5-21-3623811015-3361044348-30300820-1013") == "1013"
