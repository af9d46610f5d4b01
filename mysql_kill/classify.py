"""
Work out what kind of MySQL server we're talking to before touching it.
"""

from dataclasses import dataclass

import pymysql
from pymysql.constants import ER

from .exceptions import ClassificationFailed
from .util import debug

READ_ONLY_VARIABLES = ("innodb_read_only", "read_only")

MANAGED_MARKERS = ("amazon rds", "aurora")

MANAGED_ROUTINES_QUERY = """
SELECT COUNT(*)
FROM information_schema.routines
WHERE routine_schema = 'mysql'
  AND routine_name IN ('rds_kill', 'rds_kill_query')"""


@dataclass(frozen=True)
class ServerClassification:
    read_only: bool
    managed: bool

    @property
    def writable(self):
        return not self.read_only


def _scalar(connection, query, what):
    try:
        with connection.cursor() as cursor:
            cursor.execute(query)
            row = cursor.fetchone()
    except pymysql.MySQLError as e:
        raise ClassificationFailed("detect {}: {}".format(what, e)) from e
    return row[0] if row else None


def _flag(value):
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode()
    if isinstance(value, str):
        return value.strip().upper() in ("1", "ON", "TRUE")
    return int(value) == 1


def read_only_flag(connection, variable):
    """
    Return a server variable as a boolean, or ``None`` if the server doesn't
    know it or reports NULL.
    """
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT @@{}".format(variable))
            row = cursor.fetchone()
    except pymysql.MySQLError as e:
        if e.args and e.args[0] == ER.UNKNOWN_SYSTEM_VARIABLE:
            debug("Server has no @@{}, treating as unset".format(variable))
            return None
        raise ClassificationFailed(
            "detect reader (@@{}): {}".format(variable, e)
        ) from e
    return _flag(row[0] if row else None)


def is_read_only(*flags):
    """
    True only if some flag is provably set; unknown counts as writable.
    """
    return any(flag is True for flag in flags)


def detect_read_only(connection):
    flags = [read_only_flag(connection, name) for name in READ_ONLY_VARIABLES]
    read_only = is_read_only(*flags)
    debug(
        "Read-only flags {} -> read_only={}".format(
            dict(zip(READ_ONLY_VARIABLES, flags)), read_only
        )
    )
    return read_only


def is_managed_comment(version_comment):
    lower = (version_comment or "").lower()
    return any(marker in lower for marker in MANAGED_MARKERS)


def detect_managed(connection):
    comment = _scalar(
        connection, "SELECT @@version_comment", "rds (version_comment)"
    )
    if isinstance(comment, bytes):
        comment = comment.decode()
    if is_managed_comment(comment):
        debug("version_comment {!r} marks a managed server".format(comment))
        return True
    count = _scalar(connection, MANAGED_ROUTINES_QUERY, "rds (routines)")
    debug("Found {} rds_kill routine(s)".format(count))
    return bool(count)


def classify(connection):
    """
    Classify the server behind an open connection.

    Any query failure raises `.ClassificationFailed`; nothing here falls back
    to a "safe" guess.
    """
    return ServerClassification(
        read_only=detect_read_only(connection),
        managed=detect_managed(connection),
    )
