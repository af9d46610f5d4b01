"""
Listing running threads from ``information_schema.processlist``.
"""

from dataclasses import dataclass

import pymysql
from rich.console import Console
from rich.table import Table

from .exceptions import ExecutionFailed

COLUMNS = ("ID", "USER", "HOST", "DB", "COMMAND", "TIME", "STATE", "INFO")

BASE_QUERY = "SELECT {} FROM information_schema.processlist".format(
    ", ".join(COLUMNS)
)


@dataclass(frozen=True)
class ProcessFilter:
    user: str = ""
    db: str = ""
    host: str = ""
    command: str = ""
    state: str = ""
    match: str = ""
    min_time: int = 0
    limit: int = 100


def build_processlist_query(filters):
    """
    Return ``(sql, args)``; every filter value is bound, never formatted in.
    """
    where = []
    args = []
    if filters.user:
        where.append("USER = %s")
        args.append(filters.user)
    if filters.db:
        where.append("DB = %s")
        args.append(filters.db)
    if filters.host:
        where.append("HOST LIKE %s")
        args.append("%{}%".format(filters.host))
    if filters.command:
        where.append("COMMAND = %s")
        args.append(filters.command)
    if filters.state:
        where.append("STATE LIKE %s")
        args.append("%{}%".format(filters.state))
    if filters.match:
        where.append("INFO REGEXP %s")
        args.append(filters.match)
    if filters.min_time and int(filters.min_time) > 0:
        where.append("TIME >= %s")
        args.append(int(filters.min_time))
    query = BASE_QUERY
    if where:
        query += " WHERE " + " AND ".join(where)
    query += " ORDER BY TIME DESC"
    if filters.limit and int(filters.limit) > 0:
        query += " LIMIT {:d}".format(int(filters.limit))
    return query, args


def list_processes(connection, filters):
    query, args = build_processlist_query(filters)
    try:
        with connection.cursor() as cursor:
            cursor.execute(query, args)
            return list(cursor.fetchall())
    except pymysql.MySQLError as e:
        raise ExecutionFailed("query processlist", e) from e


def _cell(value):
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return str(value)


def render_processes(rows, console=None):
    table = Table(box=None, show_edge=False, pad_edge=False)
    for column in COLUMNS:
        table.add_column(column, overflow="fold", no_wrap=column != "INFO")
    for row in rows:
        table.add_row(*(_cell(value) for value in row))
    (console or Console()).print(table)
    return table
