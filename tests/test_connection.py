"""Tests for bastion authentication and host key handling."""

from __future__ import annotations

import socket
import threading
import time
from pathlib import Path

import pytest
from paramiko import ECDSAKey
from paramiko.auth_strategy import OnDiskPrivateKey
from paramiko.ssh_exception import AuthenticationException, BadHostKeyException

from mysql_kill import connection as connection_module
from mysql_kill.auth import BastionAuthStrategy, connect_agent
from mysql_kill.connection import (
    Bastion,
    BastionCredentials,
    IgnoreHostKeyPolicy,
    StrictHostKeyPolicy,
    derive_shorthand,
)
from mysql_kill.exceptions import (
    AuthFailure,
    Cancelled,
    HostKeyRejected,
    NoAuthMethod,
)
from mysql_kill.scope import Scope


class FakeStrategy:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.closed = False

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def strategies(monkeypatch: pytest.MonkeyPatch) -> list[FakeStrategy]:
    made: list[FakeStrategy] = []

    def factory(**kwargs) -> FakeStrategy:
        strategy = FakeStrategy(**kwargs)
        made.append(strategy)
        return strategy

    monkeypatch.setattr(connection_module, "BastionAuthStrategy", factory)
    return made


def insecure(**kwargs) -> BastionCredentials:
    kwargs.setdefault("host", "bastion.example")
    kwargs.setdefault("user", "ops")
    return BastionCredentials(insecure=True, **kwargs)


@pytest.mark.parametrize(
    "host_string, expected",
    [
        ("bastion", {"user": None, "host": "bastion", "port": None}),
        ("ops@bastion", {"user": "ops", "host": "bastion", "port": None}),
        ("ops@bastion:2222", {"user": "ops", "host": "bastion", "port": 2222}),
        ("fe80::1", {"user": None, "host": "fe80::1", "port": None}),
    ],
)
def test_derive_shorthand(host_string: str, expected: dict) -> None:
    assert derive_shorthand(host_string) == expected


def test_credentials_hide_passphrase() -> None:
    creds = BastionCredentials(host="b", passphrase="sekrit")

    assert "sekrit" not in repr(creds)
    assert creds.address == ("b", 22)


def test_no_key_and_no_agent_is_no_auth_method() -> None:
    with pytest.raises(NoAuthMethod):
        BastionAuthStrategy(username="ops")


def test_unreachable_agent_is_skipped(tmp_path: Path) -> None:
    assert connect_agent(str(tmp_path / "no-agent.sock")) is None
    with pytest.raises(NoAuthMethod):
        BastionAuthStrategy(
            username="ops", agent_socket=str(tmp_path / "no-agent.sock")
        )


def test_missing_key_file_is_auth_failure(tmp_path: Path) -> None:
    with pytest.raises(AuthFailure, match="read ssh key"):
        BastionAuthStrategy(username="ops", key_path=str(tmp_path / "id_nope"))


def test_unparseable_key_is_auth_failure(tmp_path: Path) -> None:
    key = tmp_path / "id_garbage"
    key.write_text("this is not a private key\n")

    with pytest.raises(AuthFailure, match="parse ssh key"):
        BastionAuthStrategy(username="ops", key_path=str(key))


def test_key_file_is_loaded(tmp_path: Path) -> None:
    path = tmp_path / "id_ecdsa"
    ECDSAKey.generate().write_private_key_file(str(path))

    strategy = BastionAuthStrategy(username="ops", key_path=str(path))

    assert isinstance(strategy.key, ECDSAKey)
    sources = list(strategy.get_sources())
    assert isinstance(sources[0], OnDiskPrivateKey)
    assert sources[0].path == str(path)
    strategy.close()


def test_encrypted_key_file_needs_its_passphrase(tmp_path: Path) -> None:
    path = tmp_path / "id_ecdsa"
    ECDSAKey.generate().write_private_key_file(str(path), "s3cret")

    strategy = BastionAuthStrategy(
        username="ops", key_path=str(path), passphrase="s3cret"
    )
    assert strategy.key is not None

    with pytest.raises(AuthFailure, match="parse ssh key"):
        BastionAuthStrategy(username="ops", key_path=str(path))
    with pytest.raises(AuthFailure, match="parse ssh key"):
        BastionAuthStrategy(
            username="ops", key_path=str(path), passphrase="wrong"
        )


def test_strict_checking_requires_known_hosts(strategies) -> None:
    bastion = Bastion(BastionCredentials(host="b", user="ops"))

    with pytest.raises(HostKeyRejected, match="known_hosts path required"):
        bastion.open()

    assert strategies == []


def test_unreadable_known_hosts_is_rejected(tmp_path: Path, strategies) -> None:
    creds = BastionCredentials(
        host="b", user="ops", known_hosts=str(tmp_path / "known_hosts")
    )

    with pytest.raises(HostKeyRejected, match="load known_hosts"):
        Bastion(creds).open()


def test_user_is_required() -> None:
    with pytest.raises(AuthFailure, match="ssh user required"):
        Bastion(insecure(user=None)).open()


def test_dial_failure_is_auth_failure(
    monkeypatch: pytest.MonkeyPatch, strategies
) -> None:
    def refuse(address, timeout=None):
        raise ConnectionRefusedError(111, "Connection refused")

    monkeypatch.setattr(connection_module.socket, "create_connection", refuse)
    bastion = Bastion(insecure())

    with pytest.raises(AuthFailure, match="ssh dial bastion.example:22") as info:
        bastion.open()

    assert isinstance(info.value.__cause__, ConnectionRefusedError)
    assert strategies[0].closed
    assert not bastion.is_connected


def test_cancelled_scope_never_dials(
    monkeypatch: pytest.MonkeyPatch, strategies
) -> None:
    def explode(*args, **kwargs):
        raise AssertionError("should not dial")

    monkeypatch.setattr(connection_module.socket, "create_connection", explode)
    scope = Scope()
    scope.cancel()

    with pytest.raises(Cancelled, match="ssh dial cancelled"):
        Bastion(insecure(), scope=scope).open()

    assert strategies == []


def test_cancellation_mid_handshake_abandons_it(
    monkeypatch: pytest.MonkeyPatch, strategies
) -> None:
    release = threading.Event()
    ours, theirs = socket.socketpair()

    def stall(address, timeout=None):
        release.wait(5)
        return ours

    monkeypatch.setattr(connection_module.socket, "create_connection", stall)
    scope = Scope()
    timer = threading.Timer(0.1, scope.cancel)
    timer.start()
    bastion = Bastion(insecure(), scope=scope)
    try:
        with pytest.raises(Cancelled):
            bastion.open()
        assert strategies[0].closed
        assert bastion.transport is None
        release.set()
        deadline = time.monotonic() + 5
        while ours.fileno() != -1 and time.monotonic() < deadline:
            time.sleep(0.01)
        assert ours.fileno() == -1
    finally:
        release.set()
        timer.cancel()
        theirs.close()


def test_open_stream_requires_a_session() -> None:
    from paramiko.ssh_exception import SSHException

    with pytest.raises(SSHException):
        Bastion(insecure()).open_stream("db", 3306)


def test_unknown_host_key_is_rejected() -> None:
    key = ECDSAKey.generate()

    with pytest.raises(HostKeyRejected, match="not found in known_hosts"):
        StrictHostKeyPolicy().missing_host_key(None, "bastion.example", key)


def test_unknown_host_key_is_accepted_when_insecure() -> None:
    IgnoreHostKeyPolicy().missing_host_key(
        None, "bastion.example", ECDSAKey.generate()
    )


def test_mismatched_host_key_is_rejected() -> None:
    got, expected = ECDSAKey.generate(), ECDSAKey.generate()
    error = BadHostKeyException("bastion.example", got, expected)

    translated = Bastion(insecure())._translate(error)

    assert isinstance(translated, HostKeyRejected)
    assert "does not match known_hosts" in str(translated)


def test_rejected_auth_is_auth_failure() -> None:
    translated = Bastion(insecure())._translate(
        AuthenticationException("Authentication failed.")
    )

    assert isinstance(translated, AuthFailure)
    assert "ssh auth rejected by bastion.example:22" in str(translated)
