class MySQLKillError(Exception):
    """
    Base class for every failure ``mysql-kill`` reports to the operator.

    The CLI turns any of these into a single ``mysql-kill: <cause>`` line and
    a non-zero exit; the message should therefore name the stage that failed.
    """

    pass


class AuthFailure(MySQLKillError):
    """
    Raised when the bastion refuses us, or we have nothing to offer it.
    """

    pass


class NoAuthMethod(AuthFailure):
    pass


class HostKeyRejected(MySQLKillError):
    """
    Raised when the bastion's host key can't be verified against known_hosts.
    """

    pass


class Cancelled(MySQLKillError):
    pass


class ListenFailed(MySQLKillError):
    pass


class IncompatibleTransport(MySQLKillError):
    """
    Raised when tunnelling is requested for a target a TCP tunnel can't reach,
    e.g. a unix socket path.
    """

    pass


class ConnectFailed(MySQLKillError):
    pass


class ClassificationFailed(MySQLKillError):
    pass


class WriterProtected(MySQLKillError):
    """
    Raised by the safety gate when the target accepts writes and the operator
    did not pass ``--allow-writer``.
    """

    def __init__(self, message="writer detected: use --allow-writer to proceed"):
        super().__init__(message)


class ValidationFailed(MySQLKillError):
    pass


class ExecutionFailed(MySQLKillError):
    def __init__(self, statement, cause):
        #: The SQL text that was being executed when the server errored.
        self.statement = statement
        self.cause = cause
        super().__init__("execute {}: {}".format(statement, cause))


class SecretResolutionFailed(MySQLKillError):
    pass
