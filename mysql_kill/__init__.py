from ._version import __version_info__, __version__
from .exceptions import (
    MySQLKillError,
    AuthFailure,
    NoAuthMethod,
    HostKeyRejected,
    Cancelled,
    ListenFailed,
    IncompatibleTransport,
    ConnectFailed,
    ClassificationFailed,
    WriterProtected,
    ValidationFailed,
    ExecutionFailed,
    SecretResolutionFailed,
)
from .scope import Scope
from .connection import Bastion, BastionCredentials, authenticate
from .tunnels import TunnelHandle, forward
from .descriptor import MySQLDescriptor, Target, resolve_target, reroute
from .classify import ServerClassification, classify
from .kill import KillAction, KillRequest, KillResult, dispatch
from .config import Config

__all__ = [
    '__version_info__', '__version__',
    'MySQLKillError', 'AuthFailure', 'NoAuthMethod', 'HostKeyRejected',
    'Cancelled', 'ListenFailed', 'IncompatibleTransport', 'ConnectFailed',
    'ClassificationFailed', 'WriterProtected', 'ValidationFailed',
    'ExecutionFailed', 'SecretResolutionFailed',
    'Scope',
    'Bastion', 'BastionCredentials', 'authenticate',
    'TunnelHandle', 'forward',
    'MySQLDescriptor', 'Target', 'resolve_target', 'reroute',
    'ServerClassification', 'classify',
    'KillAction', 'KillRequest', 'KillResult', 'dispatch',
    'Config',
]
