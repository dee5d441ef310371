import base64
import json
from datetime import datetime

import pytest
from sqlalchemy.dialects import mysql
from sqlalchemy.schema import CreateTable

from app.models.chat_messages import ChatMessage
from app.services.pagination_service import Cursor, decode_cursor, encode_cursor


def _raw_cursor(payload) -> str:
    return base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")


class TestCursorCodec:
    """Message cursor encoding"""

    def test_decode_returns_encoded_position(self):
        moment = datetime(2024, 5, 1, 13, 0, 0, 123456)

        assert decode_cursor(encode_cursor(42, moment)) == Cursor(id=42, timestamp=moment)

    def test_cursor_is_base64_json(self):
        cursor = encode_cursor(7, datetime(2024, 5, 1, 13, 0, 0))

        payload = json.loads(base64.b64decode(cursor))
        assert payload == {"id": 7, "timestamp": "2024-05-01T13:00:00"}

    def test_utc_suffix_is_normalised_to_naive_utc(self):
        cursor = _raw_cursor({"id": 3, "timestamp": "2024-05-01T15:00:00+02:00"})

        assert decode_cursor(cursor) == Cursor(id=3, timestamp=datetime(2024, 5, 1, 13, 0, 0))

    def test_zulu_timestamp_is_accepted(self):
        cursor = _raw_cursor({"id": 3, "timestamp": "2024-05-01T13:00:00Z"})

        assert decode_cursor(cursor).timestamp == datetime(2024, 5, 1, 13, 0, 0)

    @pytest.mark.parametrize("cursor", [
        None,
        "",
        "not a cursor!!",
        base64.b64encode(b"\xff\xfe").decode("ascii"),
        base64.b64encode(b"plain text").decode("ascii"),
        _raw_cursor([1, 2]),
        _raw_cursor({"id": 1}),
        _raw_cursor({"timestamp": "2024-05-01T13:00:00"}),
        _raw_cursor({"id": "1", "timestamp": "2024-05-01T13:00:00"}),
        _raw_cursor({"id": True, "timestamp": "2024-05-01T13:00:00"}),
        _raw_cursor({"id": 1, "timestamp": "yesterday"}),
        _raw_cursor({"id": 1, "timestamp": 1714568400}),
    ])
    def test_malformed_cursor_decodes_to_none(self, cursor):
        assert decode_cursor(cursor) is None


class TestCursorColumnPrecision:
    """Cursor timestamps keep microseconds in storage"""

    def test_mysql_created_at_keeps_microseconds(self):
        ddl = str(CreateTable(ChatMessage.__table__).compile(dialect=mysql.dialect()))

        assert "created_at DATETIME(6)" in ddl

    def test_stored_timestamp_round_trips(self, db, room, bob):
        moment = datetime(2024, 5, 1, 13, 0, 0, 123456)
        row = ChatMessage(room_id=room["id"], user_id=bob.id, message="tick", created_at=moment)
        db.add(row)
        db.commit()
        db.expire(row)

        assert row.created_at == moment
        assert decode_cursor(encode_cursor(row.id, row.created_at)).timestamp == moment
