"""Tests for processlist query building and rendering."""

from __future__ import annotations

import io

import pymysql
import pytest
from rich.console import Console

from mysql_kill.exceptions import ExecutionFailed
from mysql_kill.processlist import (
    BASE_QUERY,
    ProcessFilter,
    build_processlist_query,
    list_processes,
    render_processes,
)


def test_query_without_filters() -> None:
    query, args = build_processlist_query(ProcessFilter())

    assert query == BASE_QUERY + " ORDER BY TIME DESC LIMIT 100"
    assert args == []


def test_query_with_every_filter() -> None:
    filters = ProcessFilter(
        user="app",
        db="shop",
        host="10.0.",
        command="Query",
        state="Sending",
        match="SELECT .* FROM orders",
        min_time=30,
        limit=5,
    )

    query, args = build_processlist_query(filters)

    assert query == (
        BASE_QUERY
        + " WHERE USER = %s AND DB = %s AND HOST LIKE %s AND COMMAND = %s"
        + " AND STATE LIKE %s AND INFO REGEXP %s AND TIME >= %s"
        + " ORDER BY TIME DESC LIMIT 5"
    )
    assert args == [
        "app",
        "shop",
        "%10.0.%",
        "Query",
        "%Sending%",
        "SELECT .* FROM orders",
        30,
    ]


def test_zero_limit_means_unlimited() -> None:
    query, _ = build_processlist_query(ProcessFilter(limit=0))

    assert "LIMIT" not in query


class FakeCursor:
    def __init__(self, rows=None, error=None) -> None:
        self.rows = rows or []
        self.error = error
        self.executed = None

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc) -> None:
        pass

    def execute(self, query, args=None) -> int:
        if self.error is not None:
            raise self.error
        self.executed = (query, args)
        return len(self.rows)

    def fetchall(self):
        return tuple(self.rows)


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self.cursor_ = cursor

    def cursor(self) -> FakeCursor:
        return self.cursor_


def test_list_processes_binds_filters() -> None:
    row = (7, "app", "10.0.0.5:5123", "shop", "Query", 42, "executing", "SELECT 1")
    cursor = FakeCursor(rows=[row])

    rows = list_processes(FakeConnection(cursor), ProcessFilter(user="app"))

    assert rows == [row]
    assert cursor.executed[1] == ["app"]


def test_list_processes_wraps_errors() -> None:
    cursor = FakeCursor(error=pymysql.err.OperationalError(1227, "denied"))

    with pytest.raises(ExecutionFailed, match="processlist"):
        list_processes(FakeConnection(cursor), ProcessFilter())


def test_render_processes_prints_a_table() -> None:
    output = io.StringIO()
    console = Console(file=output, width=200, color_system=None)
    rows = [
        (7, "app", "10.0.0.5:5123", None, "Sleep", 3, None, None),
        (9, "etl", "10.0.0.6:4100", "shop", "Query", 120, "executing", b"SELECT 1"),
    ]

    table = render_processes(rows, console=console)

    text = output.getvalue()
    assert table.row_count == 2
    assert "COMMAND" in text
    assert "SELECT 1" in text
    assert "None" not in text
