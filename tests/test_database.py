"""SQLite storage behaviour: migrations, placeholders and the tracking ID backstop."""
from __future__ import annotations

import re
from pathlib import Path

import pytest

from opentrack.core.database import Database
from opentrack.repositories import tracking as tracking_repo
from opentrack.services import tracking as tracking_service


def test_adapt_sql_for_sqlite_rewrites_mysql_ddl():
    test_db = Database()
    sql = (
        "CREATE TABLE t (id INT PRIMARY KEY AUTO_INCREMENT, at DATETIME(6) NOT NULL)"
        " ENGINE=InnoDB DEFAULT CHARSET=utf8mb4"
    )

    adapted = test_db._adapt_sql_for_sqlite(sql)

    assert "INTEGER PRIMARY KEY AUTOINCREMENT" in adapted
    assert "at TEXT NOT NULL" in adapted
    assert "ENGINE" not in adapted
    assert "CHARSET" not in adapted


def test_split_sql_statements_ignores_semicolons_in_literals():
    test_db = Database()

    statements = test_db._split_sql_statements(
        "-- comment; here\nINSERT INTO t VALUES ('a;b');\nSELECT 1;"
    )

    assert statements == ["INSERT INTO t VALUES ('a;b')", "SELECT 1"]


def test_placeholders_adapted_only_for_sqlite():
    test_db = Database()
    test_db._use_sqlite = True
    assert test_db._adapt_placeholders("SELECT * FROM t WHERE a = %s") == "SELECT * FROM t WHERE a = ?"

    test_db._use_sqlite = False
    assert test_db._adapt_placeholders("SELECT * FROM t WHERE a = %s") == "SELECT * FROM t WHERE a = %s"


@pytest.mark.anyio
async def test_migrations_create_tables_once(sqlite_db):
    await sqlite_db.run_migrations()
    await sqlite_db.run_migrations()
    try:
        applied = await sqlite_db.fetch_all("SELECT name FROM migrations")
        tables = await sqlite_db.fetch_all(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
    finally:
        await sqlite_db.disconnect()

    assert [row["name"] for row in applied] == ["001_tracking_tables.sql"]
    table_names = {row["name"] for row in tables}
    assert {"tracked_messages", "open_events"} <= table_names


@pytest.mark.anyio
async def test_duplicate_tracking_id_is_rejected(sqlite_db):
    await sqlite_db.run_migrations()
    try:
        await tracking_repo.create_message(
            tracking_id="fixed", subject="First", recipient="a@example.com", sender_ip="1.1.1.1"
        )
        with pytest.raises(Exception):
            await tracking_repo.create_message(
                tracking_id="fixed", subject="Second", recipient="b@example.com", sender_ip="2.2.2.2"
            )
        message = await tracking_repo.get_message("fixed")
    finally:
        await sqlite_db.disconnect()

    assert message["subject"] == "First"


@pytest.mark.anyio
async def test_id_collision_surfaces_as_store_error(sqlite_db, monkeypatch):
    await sqlite_db.run_migrations()
    monkeypatch.setattr(tracking_service, "generate_tracking_id", lambda: "collide")
    try:
        await tracking_service.create_tracked_message(
            subject="First", recipient="a@example.com", sender_ip="1.1.1.1"
        )
        with pytest.raises(tracking_service.TrackingStoreError):
            await tracking_service.create_tracked_message(
                subject="Second", recipient="b@example.com", sender_ip="2.2.2.2"
            )
    finally:
        await sqlite_db.disconnect()


@pytest.mark.anyio
async def test_purge_counts_add_up(sqlite_db):
    await sqlite_db.run_migrations()
    try:
        await tracking_repo.create_message(
            tracking_id="msg", subject="S", recipient="r@example.com", sender_ip="1.2.3.4"
        )
        for ip in ("1.2.3.4", "9.9.9.9", "1.2.3.4", "8.8.8.8"):
            await tracking_service.record_open(tracking_id="msg", user_agent="UA", ip=ip)
        before_purge = await tracking_repo.count_open_events("msg")
        removed, remaining = await tracking_service.remove_self_opens("msg")
        events = await tracking_repo.list_open_events("msg")
    finally:
        await sqlite_db.disconnect()

    assert before_purge == 4
    assert removed + remaining == before_purge
    assert removed == 2
    assert [event["ip"] for event in events] == ["9.9.9.9", "8.8.8.8"]


def test_free_text_columns_have_no_length_limit():
    migration = (Path(__file__).resolve().parent.parent / "migrations" / "001_tracking_tables.sql").read_text()
    columns = {
        match.group(1): match.group(2)
        for match in re.finditer(r"^\s+(\w+) (\w+)", migration, flags=re.MULTILINE)
    }

    for column in ("subject", "recipient", "sender_ip", "user_agent", "ip"):
        assert columns[column] == "TEXT", column


@pytest.mark.anyio
async def test_overlong_recipient_and_ip_are_stored_intact(sqlite_db):
    recipient = ";".join(f"user{index}@example.com" for index in range(60))
    forwarded_ip = "2001:db8::" + "a" * 120
    await sqlite_db.run_migrations()
    try:
        created = await tracking_service.create_tracked_message(
            subject="Wide", recipient=recipient, sender_ip=forwarded_ip
        )
        recorded = await tracking_service.record_open(
            tracking_id=created["tracking_id"], user_agent="UA", ip=forwarded_ip
        )
        message = await tracking_service.get_tracked_message(created["tracking_id"])
    finally:
        await sqlite_db.disconnect()

    assert recorded is True
    assert message.recipient == recipient
    assert message.sender_ip == forwarded_ip
    assert [(event.ip, event.is_self) for event in message.opens] == [(forwarded_ip, True)]
