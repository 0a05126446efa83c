import pytest

from mediauploader.core.content_range import content_range, next_offset_from_range, unknown_range


def test_content_range_uses_inclusive_end() -> None:
    assert content_range(0, 10, 10) == "bytes 0-9/10"
    assert content_range(4096, 8192, 8192) == "bytes 4096-8191/8192"


def test_unknown_range_for_probes() -> None:
    assert unknown_range(1234) == "bytes */1234"


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("bytes=0-4095", 4096),
        ("bytes=0-0", 1),
        ("  bytes=0-99  ", 100),
        (None, None),
        ("", None),
        ("0-4095", None),
        ("bytes 0-4095", None),
        ("bytes=0-", None),
        ("bytes=0-10/20", None),
    ],
)
def test_next_offset_from_range(header: str | None, expected: int | None) -> None:
    assert next_offset_from_range(header) == expected
