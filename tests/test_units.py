import pytest

from volapi.units import parse_volume_size


@pytest.mark.parametrize("size,expected", [
    ("10g", 10240),
    ("10G", 10240),
    ("10GB", 10240),
    ("500m", 500),
    ("500MB", 500),
    (2048, 2048),
    (None, None),
])
def test_parse_volume_size(size, expected):
    assert parse_volume_size(size) == expected


@pytest.mark.parametrize("size", ["7", "abc", "10T", "0g", "-1g", 0, -5, True, 1.5, [10]])
def test_parse_volume_size_rejects(size):
    with pytest.raises(ValueError):
        parse_volume_size(size)
