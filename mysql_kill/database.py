"""
Open a MySQL connection, through an SSH bastion when one is configured.
"""

from contextlib import contextmanager

import pymysql

from .connection import authenticate
from .credentials import resolve_password
from .descriptor import reroute, resolve_target
from .exceptions import ConnectFailed
from .scope import Scope
from .util import debug


def connect(descriptor):
    """
    Connect (and ping) using PyMySQL; failures become `.ConnectFailed`.
    """
    try:
        connection = pymysql.connect(**descriptor.connect_kwargs())
    except pymysql.MySQLError as e:
        raise ConnectFailed(
            "connect {}: {}".format(descriptor.address, e)
        ) from e
    try:
        connection.ping(reconnect=False)
    except pymysql.MySQLError as e:
        if connection.open:
            connection.close()
        raise ConnectFailed("ping {}: {}".format(descriptor.address, e)) from e
    return connection


@contextmanager
def open_database(
    descriptor,
    credentials=None,
    scope=None,
    resolve_secret=resolve_password,
):
    """
    Yield an open PyMySQL connection for ``descriptor``.

    ``credentials`` (a `.BastionCredentials`) requests tunnelling; ``None``
    connects directly. On the way out the tunnel is closed first, then the
    database connection, whatever happened in between.
    """
    if scope is None:
        scope = Scope()
    if descriptor.password:
        descriptor = descriptor.with_password(
            resolve_secret(descriptor.password)
        )
    target = resolve_target(descriptor, credentials is not None)
    tunnel = None
    if target.needs_tunnel:
        bastion = authenticate(credentials, scope=scope)
        tunnel = bastion.forward_local(
            remote_port=target.port, remote_host=target.host
        )
        descriptor = reroute(descriptor, tunnel.local_host, tunnel.local_port)
        debug("Routing MySQL traffic through {!r}".format(tunnel))
    try:
        scope.check("connect")
        connection = connect(descriptor)
    except BaseException:
        if tunnel is not None:
            tunnel.close()
        raise
    try:
        yield connection
    finally:
        if tunnel is not None:
            tunnel.close()
        # A KILL aimed at our own thread leaves nothing to close
        if connection.open:
            connection.close()
