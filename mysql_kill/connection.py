from dataclasses import dataclass, field
from threading import Event
import socket

from decorator import decorator
from invoke.util import ExceptionHandlingThread
from paramiko import AuthenticationException, BadHostKeyException
from paramiko.client import SSHClient, MissingHostKeyPolicy
from paramiko.ssh_exception import SSHException

from .auth import BastionAuthStrategy
from .exceptions import AuthFailure, HostKeyRejected, MySQLKillError
from .scope import Scope
from .tunnels import forward
from .util import debug


@decorator
def opens(method, self, *args, **kwargs):
    self.open()
    return method(self, *args, **kwargs)


def derive_shorthand(host_string: str):
    user_hostport = host_string.rsplit("@", 1)
    hostport = user_hostport.pop()
    user = user_hostport[0] if user_hostport and user_hostport[0] else None
    if hostport.count(":") > 1:
        host = hostport
        port = None
    else:
        host_port = hostport.rsplit(":", 1)
        host = host_port.pop(0) or None
        port = host_port[0] if host_port and host_port[0] else None
    if port is not None:
        port = int(port)
    return {"user": user, "host": host, "port": port}


@dataclass(frozen=True)
class BastionCredentials:
    host: str
    port: int = 22
    user: str | None = None
    key_path: str | None = None
    passphrase: str | None = field(default=None, repr=False)
    agent_socket: str | None = None
    known_hosts: str | None = None
    insecure: bool = False
    timeout: float | None = 10.0

    @property
    def address(self):
        return (self.host, int(self.port))


class StrictHostKeyPolicy(MissingHostKeyPolicy):
    def missing_host_key(self, client, hostname, key):
        raise HostKeyRejected(
            "ssh host {} ({} key) not found in known_hosts".format(
                hostname, key.get_name()
            )
        )


class IgnoreHostKeyPolicy(MissingHostKeyPolicy):
    def missing_host_key(self, client, hostname, key):
        msg = "Accepting unverified {} host key for {}: strict checking disabled"  # noqa
        debug(msg.format(key.get_name(), hostname))


class Handshake(ExceptionHandlingThread):
    def __init__(self, client, credentials, strategy, done):
        super().__init__(name="mysql-kill-ssh-handshake")
        self.client = client
        self.credentials = credentials
        self.strategy = strategy
        self.done = done
        self.abandoned = Event()
        self.sock = None

    def _run(self):
        creds = self.credentials
        try:
            self.sock = socket.create_connection(
                creds.address, timeout=creds.timeout
            )
            if self.abandoned.is_set():
                return
            self.client.connect(
                hostname=creds.host,
                port=int(creds.port),
                username=creds.user,
                sock=self.sock,
                timeout=creds.timeout,
                banner_timeout=creds.timeout,
                auth_timeout=creds.timeout,
                auth_strategy=self.strategy,
            )
        finally:
            # Nobody is waiting on us anymore; don't leave a live transport.
            if self.abandoned.is_set():
                debug("Handshake finished after being abandoned, closing it")
                self.hangup()
            self.done.set()

    def abandon(self):
        self.abandoned.set()
        self.hangup()

    def hangup(self):
        if self.sock is not None:
            try:
                self.sock.close()
            except OSError:
                pass
        self.client.close()


class Bastion:
    poll_interval = 0.05

    def __init__(self, credentials, scope=None):
        self.credentials = credentials
        self.scope = scope if scope is not None else Scope()
        self.client = SSHClient()
        self.transport = None

    def __repr__(self):
        creds = self.credentials
        return "<Bastion host={} user={} port={}>".format(
            creds.host, creds.user, creds.port
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def is_connected(self):
        return self.transport.active if self.transport else False

    def open(self):
        if self.is_connected:
            return
        creds = self.credentials
        if not creds.host:
            raise AuthFailure("ssh host required")
        if not creds.user:
            raise AuthFailure("ssh user required")
        self.configure_host_keys()
        self.scope.check("ssh dial")
        strategy = BastionAuthStrategy(
            username=creds.user,
            key_path=creds.key_path,
            passphrase=creds.passphrase,
            agent_socket=creds.agent_socket,
        )
        done = Event()
        handshake = Handshake(self.client, creds, strategy, done)
        debug("Dialing {!r}".format(self))
        handshake.start()
        try:
            while not done.wait(self.poll_interval):
                if self.scope.cancelled:
                    debug("Scope cancelled mid-handshake, abandoning dial")
                    self.scope.check("ssh dial")
        except BaseException:
            handshake.abandon()
            strategy.close()
            handshake.join(timeout=1)
            raise
        wrapper = handshake.exception()
        if wrapper is not None:
            self.client.close()
            strategy.close()
            error = self._translate(wrapper.value)
            if error is wrapper.value:
                raise error
            raise error from wrapper.value
        self.transport = self.client.get_transport()
        debug("Connected to {!r}".format(self))

    def configure_host_keys(self):
        creds = self.credentials
        if creds.insecure:
            self.client.set_missing_host_key_policy(IgnoreHostKeyPolicy())
            return
        if not creds.known_hosts:
            raise HostKeyRejected(
                "known_hosts path required for strict host key checking"
            )
        try:
            self.client.load_host_keys(creds.known_hosts)
        except OSError as e:
            raise HostKeyRejected(
                "load known_hosts {}: {}".format(creds.known_hosts, e)
            ) from e
        self.client.set_missing_host_key_policy(StrictHostKeyPolicy())

    def _translate(self, exc):
        if isinstance(exc, MySQLKillError):
            return exc
        addr = "{}:{}".format(*self.credentials.address)
        if isinstance(exc, BadHostKeyException):
            return HostKeyRejected(
                "ssh host key for {} does not match known_hosts: {}".format(
                    addr, exc
                )
            )
        if isinstance(exc, AuthenticationException):
            return AuthFailure("ssh auth rejected by {}: {}".format(addr, exc))
        return AuthFailure("ssh dial {}: {}".format(addr, exc))

    def open_stream(self, host, port, src_addr=("127.0.0.1", 0), timeout=None):
        if not self.is_connected:
            raise SSHException("SSH session not active")
        return self.transport.open_channel(
            kind="direct-tcpip",
            dest_addr=(host, int(port)),
            src_addr=src_addr,
            timeout=timeout,
        )

    @opens
    def forward_local(
        self,
        remote_port,
        remote_host="localhost",
        local_port=0,
        local_host="127.0.0.1",
    ):
        return forward(
            self,
            remote_host,
            remote_port,
            local_host=local_host,
            local_port=local_port,
            open_timeout=self.credentials.timeout,
        )

    def close(self):
        self.client.close()
        self.transport = None


def authenticate(credentials, scope=None):
    bastion = Bastion(credentials, scope=scope)
    bastion.open()
    return bastion
