import socket

from paramiko import PKey, SSHException, UnknownKeyType
from paramiko.agent import AgentSSH
from paramiko.auth_strategy import (
    AuthStrategy,
    InMemoryPrivateKey,
    OnDiskPrivateKey,
)
from paramiko.config import SSHConfigDict

from .exceptions import AuthFailure, NoAuthMethod
from .util import debug


class SocketAgent(AgentSSH):
    def __init__(self, path):
        super().__init__()
        conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            conn.connect(path)
        except OSError:
            conn.close()
            raise
        self._connect(conn)

    def close(self):
        self._close()


def load_private_key(path, passphrase=None):
    if isinstance(passphrase, str):
        passphrase = passphrase.encode()
    try:
        # Positional: the keyword is named differently across paramiko releases
        return PKey.from_path(path, passphrase)
    except OSError as e:
        raise AuthFailure("read ssh key {}: {}".format(path, e)) from e
    # cryptography reports a missing or unexpected passphrase as TypeError
    except (SSHException, UnknownKeyType, ValueError, TypeError) as e:
        raise AuthFailure("parse ssh key {}: {}".format(path, e)) from e


def connect_agent(path):
    try:
        agent = SocketAgent(path)
    except (OSError, SSHException) as e:
        debug("ssh agent at {!r} unreachable, skipping: {}".format(path, e))
        return None
    return agent


class BastionAuthStrategy(AuthStrategy):
    def __init__(
        self,
        username,
        key_path=None,
        passphrase=None,
        agent_socket=None,
        ssh_config=None,
    ):
        super().__init__(ssh_config=ssh_config or SSHConfigDict())
        self.username = username
        self.key_path = key_path
        self.key = None
        self.agent = None
        if key_path:
            self.key = load_private_key(key_path, passphrase)
        if agent_socket:
            self.agent = connect_agent(agent_socket)
        if self.key is None and not self.agent_keys:
            self.close()
            raise NoAuthMethod(
                "no ssh auth method available: provide an ssh key or SSH_AUTH_SOCK"  # noqa
            )

    @property
    def agent_keys(self):
        if self.agent is None:
            return ()
        return self.agent.get_keys()

    def get_sources(self):
        if self.key is not None:
            yield OnDiskPrivateKey(
                username=self.username,
                source="python-config",
                path=self.key_path,
                pkey=self.key,
            )
        for key in self.agent_keys:
            # Same key already offered from disk
            if self.key is not None and key.asbytes() == self.key.asbytes():
                continue
            yield InMemoryPrivateKey(username=self.username, pkey=key)

    def authenticate(self, *args, **kwargs):
        try:
            return super().authenticate(*args, **kwargs)
        finally:
            self.close()

    def close(self):
        if self.agent is not None:
            self.agent.close()
            self.agent = None
