from contextlib import contextmanager

from invoke import task

from .classify import classify
from .database import open_database
from .kill import KillRequest, dispatch, enforce_writer_gate
from .processlist import ProcessFilter, list_processes, render_processes
from .scope import Scope
from .util import debug


@contextmanager
def classified_database(config, scope):
    """
    Open the configured database, classify it and apply the writer gate.

    Yields ``(connection, classification)``.
    """
    descriptor = config.mysql_descriptor()
    credentials = config.bastion_credentials()
    with open_database(descriptor, credentials, scope=scope) as connection:
        classification = classify(connection)
        debug("Server classified as {!r}".format(classification))
        enforce_writer_gate(classification, config.allow_writer)
        yield connection, classification


def invocation_scope(config):
    return Scope(timeout=config.timeouts.command)


@task(
    positional=["id"],
    auto_shortflags=False,
    help={
        "id": "Process id to terminate, as shown by the 'list' task.",
        "kill": "Terminate the whole connection.",
        "kill-query": "Terminate only the running statement.",
        "dry-run": "Print the statement without executing it. Default when neither --kill nor --kill-query is given.",  # noqa
    },
)
def kill(c, id, kill=False, kill_query=False, dry_run=False):
    """
    Safely terminate a MySQL connection or query.
    """
    request = KillRequest(
        process_id=id,
        kill=kill,
        kill_query=kill_query,
        dry_run=True if dry_run or c.config.run.dry else None,
    )
    request.validate()
    scope = invocation_scope(c.config)
    with classified_database(c.config, scope) as (connection, classification):
        return dispatch(connection, classification, request)


@task(
    name="list",
    auto_shortflags=False,
    help={
        "user": "Only threads owned by this user.",
        "db": "Only threads using this database.",
        "host": "Only threads whose client host contains this text.",
        "command": "Only threads in this command state (e.g. Query, Sleep).",
        "state": "Only threads whose state contains this text.",
        "match": "Only threads whose statement matches this regular expression.",  # noqa
        "min-time": "Only threads running for at least this many seconds.",
        "limit": "Show at most this many threads (0 for no limit).",
    },
)
def list_(
    c,
    user="",
    db="",
    host="",
    command="",
    state="",
    match="",
    min_time=0,
    limit=100,
):
    """
    Show running threads from information_schema.processlist.
    """
    filters = ProcessFilter(
        user=user,
        db=db,
        host=host,
        command=command,
        state=state,
        match=match,
        min_time=int(min_time),
        limit=int(limit),
    )
    scope = invocation_scope(c.config)
    with classified_database(c.config, scope) as (connection, _):
        rows = list_processes(connection, filters)
    render_processes(rows)
    return rows
