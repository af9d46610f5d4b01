"""
Build, preview and execute the one termination statement of an invocation.
"""

from dataclasses import dataclass
import enum

import pymysql

from .exceptions import ExecutionFailed, ValidationFailed, WriterProtected
from .util import debug

NATIVE_STATEMENTS = {
    "connection": "KILL {:d}",
    "query": "KILL QUERY {:d}",
}

MANAGED_ROUTINES = {
    "connection": "mysql.rds_kill",
    "query": "mysql.rds_kill_query",
}


class KillScope(enum.Enum):
    CONNECTION = "connection"
    QUERY = "query"


class Variant(enum.Enum):
    NATIVE = "native"
    MANAGED = "managed"


class Stage(enum.Enum):
    VALIDATED = "validated"
    BUILT = "built"
    PREVIEWED = "previewed"
    EXECUTED = "executed"
    DONE = "done"


def parse_process_id(value):
    if isinstance(value, bool):
        raise ValidationFailed("query id must be an integer, got {!r}".format(value))
    try:
        process_id = int(str(value).strip()) if value is not None else 0
    except ValueError:
        raise ValidationFailed(
            "query id must be an integer, got {!r}".format(value)
        ) from None
    if process_id == 0:
        raise ValidationFailed("query id is required")
    return process_id


@dataclass(frozen=True)
class KillRequest:
    """
    What the operator asked for, before any checking.

    ``dry_run`` is tri-state: ``None`` means "preview unless a scope flag was
    given".
    """

    process_id: object
    kill: bool = False
    kill_query: bool = False
    dry_run: bool | None = None

    @property
    def preview(self):
        if self.dry_run is None:
            return not (self.kill or self.kill_query)
        return bool(self.dry_run)

    @property
    def scope(self):
        return KillScope.QUERY if self.kill_query else KillScope.CONNECTION

    def validate(self):
        """
        Return the request's process id as an int, or raise
        `.ValidationFailed`.
        """
        process_id = parse_process_id(self.process_id)
        if self.kill and self.kill_query:
            raise ValidationFailed("--kill and --kill-query are mutually exclusive")
        if not self.kill and not self.kill_query and self.dry_run is False:
            raise ValidationFailed(
                "no action specified: use --kill or --kill-query, or rely on default --dry-run"  # noqa
            )
        return process_id


@dataclass(frozen=True)
class KillAction:
    process_id: int
    scope: KillScope
    variant: Variant
    preview: bool

    @property
    def routine(self):
        if self.variant is not Variant.MANAGED:
            return None
        return MANAGED_ROUTINES[self.scope.value]

    @property
    def statement(self):
        """
        The literal SQL shown to the operator.
        """
        if self.variant is Variant.MANAGED:
            return "CALL {}({:d})".format(self.routine, self.process_id)
        return NATIVE_STATEMENTS[self.scope.value].format(self.process_id)

    def query(self):
        """
        Return ``(sql, args)`` as handed to the driver; routine calls bind
        the id instead of formatting it in.
        """
        if self.variant is Variant.MANAGED:
            return "CALL {}(%s)".format(self.routine), (self.process_id,)
        return self.statement, None


@dataclass(frozen=True)
class KillResult:
    action: KillAction
    stage: Stage
    executed: bool

    @property
    def statement(self):
        return self.action.statement


def enforce_writer_gate(classification, allow_writer):
    if classification.writable and not allow_writer:
        raise WriterProtected()


def build_action(classification, request):
    process_id = request.validate()
    debug("Kill request for {} {}".format(process_id, Stage.VALIDATED.value))
    variant = Variant.MANAGED if classification.managed else Variant.NATIVE
    action = KillAction(
        process_id=process_id,
        scope=request.scope,
        variant=variant,
        preview=request.preview,
    )
    debug("{!r} {}".format(action, Stage.BUILT.value))
    return action


def execute(connection, action):
    sql, args = action.query()
    try:
        with connection.cursor() as cursor:
            cursor.execute(sql, args)
    except pymysql.MySQLError as e:
        raise ExecutionFailed(action.statement, e) from e


def dispatch(connection, classification, request, echo=print):
    """
    Validate ``request``, build its action, then preview or execute it once.
    """
    action = build_action(classification, request)
    if action.preview:
        echo("DRY RUN: {}".format(action.statement))
        stage = Stage.PREVIEWED
    else:
        execute(connection, action)
        echo("OK: {}".format(action.statement))
        stage = Stage.EXECUTED
    debug("{} {}, {}".format(action.statement, stage.value, Stage.DONE.value))
    return KillResult(
        action=action, stage=stage, executed=stage is Stage.EXECUTED
    )
