from datetime import datetime, timezone, timedelta

import donation_store
from donation_store import Session, create_session, format_timestamp, parse_timestamp

T0 = datetime(2026, 10, 19, 10, 0, 0, tzinfo=timezone.utc)


def test_format_timestamp_uses_milliseconds_and_z():
    assert format_timestamp(T0 + timedelta(microseconds=123456)) == "2026-10-19T10:00:00.123Z"


def test_parse_timestamp_variants():
    assert parse_timestamp("2026-10-19T10:00:00.000Z") == T0
    assert parse_timestamp("2026-10-19 10:00:00") == T0
    assert parse_timestamp("2026-10-19T17:00:00+07:00") == T0


def test_create_session_expires_after_ten_minutes():
    session = create_session(25000, "Budi", "", None, now=T0)

    assert session.expires_at == T0 + timedelta(minutes=10)
    assert session.donor_message is None
    assert session.is_active(T0 + timedelta(minutes=9, seconds=59))
    assert not session.is_active(T0 + timedelta(minutes=10))


def test_session_dict_round_trip():
    session = create_session(25000, "Budi", "Semangat!", "https://media.giphy.com/a.gif", now=T0)
    data = session.to_dict()

    assert data["generatedAt"] == "2026-10-19T10:00:00.000Z"
    assert data["expiresAt"] == "2026-10-19T10:10:00.000Z"
    assert Session.from_dict(data) == session


def test_session_without_donor_details():
    session = create_session(5000, now=T0)
    assert not session.has_donor_metadata()
    assert "donorName" not in session.to_dict()


def test_save_load_and_clear_session(tmp_path):
    db_dir = str(tmp_path)
    assert donation_store.load_session(db_dir) is None

    session = create_session(5000, now=T0)
    donation_store.save_session(session, db_dir)
    assert donation_store.load_session(db_dir) == session

    donation_store.clear_session(db_dir)
    assert donation_store.load_session(db_dir) is None
    donation_store.clear_session(db_dir)


def test_unreadable_session_is_discarded(tmp_path):
    (tmp_path / donation_store.SESSION_FILE).write_text('{"amount": 5}')
    assert donation_store.load_session(str(tmp_path)) is None


def test_metadata_cache_uses_integer_ids(tmp_path):
    db_dir = str(tmp_path)
    donation_store.save_metadata_entry(7, {"donorName": "Budi"}, db_dir)
    donation_store.save_metadata_entry("8", {"message": "Halo"}, db_dir)

    assert donation_store.load_metadata(db_dir) == {7: {"donorName": "Budi"}, 8: {"message": "Halo"}}


def test_config_requires_raw_string(tmp_path):
    db_dir = str(tmp_path)
    assert donation_store.load_config(db_dir) is None

    donation_store.save_config({"rawString": ""}, db_dir)
    assert donation_store.load_config(db_dir) is None

    donation_store.save_config({"rawString": "000201"}, db_dir)
    assert donation_store.load_config(db_dir) == {"rawString": "000201"}


def test_corrupt_config_is_ignored(tmp_path):
    (tmp_path / donation_store.CONFIG_FILE).write_text("{not json")
    assert donation_store.load_config(str(tmp_path)) is None


def test_last_match(tmp_path):
    db_dir = str(tmp_path)
    assert donation_store.load_last_match(db_dir) is None

    donation_store.save_last_match({"id": 3, "donorName": "Budi"}, db_dir)
    assert donation_store.load_last_match(db_dir) == {"id": 3, "donorName": "Budi"}
