"""
Tunnel and connection forwarding internals.

If you're looking for simple, end-user-focused connection forwarding, please
see `.Bastion.forward_local` or `forward`.
"""

import enum
import socket
import time
from threading import Event, Lock

from invoke.util import ExceptionHandlingThread
from paramiko.ssh_exception import SSHException

from .exceptions import ListenFailed
from .util import debug


class TunnelState(enum.Enum):
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


def hangup(endpoint):
    if isinstance(endpoint, socket.socket):
        # shutdown() wakes any thread blocked in recv(); close() alone won't
        try:
            endpoint.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
    endpoint.close()


class TunnelManager(ExceptionHandlingThread):
    def __init__(
        self,
        listener,
        remote_host,
        remote_port,
        bastion,
        finished,
        open_timeout=None,
    ):
        super().__init__(name="mysql-kill-tunnel-manager")
        self.listener = listener
        self.remote_address = (remote_host, int(remote_port))
        self.bastion = bastion
        self.finished = finished
        self.open_timeout = open_timeout

    def _run(self):
        while not self.finished.is_set():
            try:
                sock, local_addr = self.listener.accept()
            except BlockingIOError:  # ie errno.EAGAIN
                time.sleep(0.01)
                continue
            except OSError:
                # Listener closed by TunnelHandle.close()
                break
            sock.setblocking(True)
            # Match OpenSSH's forwarding socket behavior
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            debug("Accepted {}:{} for forwarding".format(*local_addr[:2]))
            tunnel = Tunnel(
                bastion=self.bastion,
                sock=sock,
                local_addr=local_addr[:2],
                remote_address=self.remote_address,
                open_timeout=self.open_timeout,
            )
            tunnel.start()
        debug("Accept loop for {}:{} finished".format(*self.remote_address))


class Tunnel(ExceptionHandlingThread):
    def __init__(
        self, bastion, sock, local_addr, remote_address, open_timeout=None
    ):
        super().__init__(name="mysql-kill-tunnel")
        self.bastion = bastion
        self.sock = sock
        self.local_addr = local_addr
        self.remote_address = remote_address
        self.open_timeout = open_timeout

    def _run(self):
        host, port = self.remote_address
        try:
            channel = self.bastion.open_stream(
                host, port, src_addr=self.local_addr, timeout=self.open_timeout
            )
        except (OSError, EOFError, SSHException) as e:
            msg = "Could not open channel to {}:{} for {}:{}, dropping it: {}"
            debug(msg.format(host, port, *self.local_addr, e))
            hangup(self.sock)
            return
        pumps = (
            Pump(reader=self.sock, writer=channel, name="local->remote"),
            Pump(reader=channel, writer=self.sock, name="remote->local"),
        )
        for pump in pumps:
            pump.start()
        for pump in pumps:
            pump.join()
        hangup(channel)
        hangup(self.sock)


class Pump(ExceptionHandlingThread):
    """
    Copy bytes from one end of a forwarded pair to the other, in order.
    """

    chunk_size = 32768

    def __init__(self, reader, writer, name):
        super().__init__(name="mysql-kill-pump {}".format(name))
        self.reader = reader
        self.writer = writer

    def _run(self):
        try:
            while not self.read_and_write(
                self.reader, self.writer, self.chunk_size
            ):
                pass
        except (OSError, EOFError, SSHException) as e:
            debug("{} stopped: {}".format(self.name, e))
        finally:
            hangup(self.writer)

    def read_and_write(self, reader, writer, chunk_size):
        """
        Read ``chunk_size`` from ``reader``, writing result to ``writer``.

        Returns ``None`` if successful, or ``True`` if the read was empty.
        """
        data = reader.recv(chunk_size)
        if len(data) == 0:
            return True
        writer.sendall(data)


class TunnelHandle:
    def __init__(self, listener, bastion, manager, finished):
        self.listener = listener
        self.local_host, self.local_port = listener.getsockname()[:2]
        self.bastion = bastion
        self.manager = manager
        self.finished = finished
        self.state = TunnelState.OPEN
        self._lock = Lock()

    def __repr__(self):
        return "<TunnelHandle {}:{} -> {}:{} {}>".format(
            self.local_host,
            self.local_port,
            *self.manager.remote_address,
            self.state.value,
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def address(self):
        return (self.local_host, self.local_port)

    @property
    def is_open(self):
        return self.state is TunnelState.OPEN

    def close(self):
        with self._lock:
            if self.state is not TunnelState.OPEN:
                return
            self.state = TunnelState.CLOSING
        debug("Closing {!r}".format(self))
        self.finished.set()
        try:
            self.listener.close()
        finally:
            try:
                self.bastion.close()
            finally:
                with self._lock:
                    self.state = TunnelState.CLOSED


def forward(
    bastion,
    remote_host,
    remote_port,
    local_host="127.0.0.1",
    local_port=0,
    open_timeout=None,
):
    listener = None
    try:
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind((local_host, local_port))
        listener.listen()
        listener.setblocking(False)
    except OSError as e:
        if listener is not None:
            listener.close()
        bastion.close()
        raise ListenFailed(
            "listen on {}:{}: {}".format(local_host, local_port, e)
        ) from e
    finished = Event()
    manager = TunnelManager(
        listener=listener,
        remote_host=remote_host,
        remote_port=remote_port,
        bastion=bastion,
        finished=finished,
        open_timeout=open_timeout,
    )
    handle = TunnelHandle(listener, bastion, manager, finished)
    manager.start()
    debug("Forwarding {!r}".format(handle))
    return handle
