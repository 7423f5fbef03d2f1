from datetime import datetime

import pytest

from vetchat.errors import ValidationFailure
from vetchat.utils.pagination import decode_cursor, encode_cursor


def test_cursor_is_opaque_and_url_safe():
    cursor = encode_cursor(datetime(2024, 5, 1, 12, 30, 0, 123456), "abc-123")
    assert "=" not in cursor
    assert decode_cursor(cursor) == (datetime(2024, 5, 1, 12, 30, 0, 123456), "abc-123")


@pytest.mark.parametrize("cursor", ["%%%", "bm90LWpzb24", "WzFd"])
def test_malformed_cursor_is_a_validation_failure(cursor):
    with pytest.raises(ValidationFailure) as exc:
        decode_cursor(cursor)
    assert "cursor" in exc.value.errors
