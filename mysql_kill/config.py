import copy
import errno
import os

from invoke.config import Config as InvokeConfig, merge_dicts
from paramiko.config import SSHConfig

from .connection import BastionCredentials, derive_shorthand
from .descriptor import MySQLDescriptor
from .exceptions import ValidationFailed
from .util import get_local_user, debug, first_non_empty


#: Unprefixed env vars also honoured, mapped to config keypaths. Prefixed
#: ``MYSQL_KILL_*`` vars win over these.
ENV_ALIASES = {
    "MYSQL_DSN": ("mysql", "dsn"),
    "MYSQL_HOST": ("mysql", "host"),
    "MYSQL_PORT": ("mysql", "port"),
    "MYSQL_USER": ("mysql", "user"),
    "MYSQL_PASSWORD": ("mysql", "password"),
    "MYSQL_DB": ("mysql", "db"),
    "MYSQL_SOCKET": ("mysql", "socket"),
    "MYSQL_TLS": ("mysql", "tls"),
    "SSH_HOST": ("ssh", "host"),
    "SSH_PORT": ("ssh", "port"),
    "SSH_USER": ("ssh", "user"),
    "SSH_KEY": ("ssh", "key"),
    "SSH_KNOWN_HOSTS": ("ssh", "known_hosts"),
    "SSH_NO_STRICT_HOST_KEY": ("ssh", "no_strict_host_key"),
}

TRUTHY = ("1", "true", "yes", "on")


def expand_path(path):
    if not path:
        return None
    return os.path.expanduser(str(path))


def as_int(value, what):
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed(
            "invalid {}: {!r} is not an integer".format(what, value)
        ) from None


def as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() in TRUTHY
    return bool(value)


class Config(InvokeConfig):
    prefix = "mysql_kill"

    def __init__(self, *args, **kwargs):
        ssh_config = kwargs.pop("ssh_config", None)
        lazy = kwargs.get("lazy", False)
        self.set_runtime_ssh_path(kwargs.pop("runtime_ssh_path", None))
        system_path = kwargs.pop("system_ssh_path", "/etc/ssh/ssh_config")
        self._set(_system_ssh_path=system_path)
        self._set(_user_ssh_path=kwargs.pop("user_ssh_path", "~/.ssh/config"))
        self._set(_environ=kwargs.pop("environ", None))
        explicit = ssh_config is not None
        self._set(_given_explicit_object=explicit)
        if ssh_config is None:
            ssh_config = SSHConfig()
        self._set(base_ssh_config=ssh_config)
        super().__init__(*args, **kwargs)
        if not lazy:
            self.load_ssh_config()

    @property
    def environ(self):
        return os.environ if self._environ is None else self._environ

    def set_runtime_ssh_path(self, path):
        self._set(_runtime_ssh_path=path)

    def load_ssh_config(self):
        if self.ssh_config_path:
            self._runtime_ssh_path = self.ssh_config_path
        if not self._given_explicit_object:
            self._load_ssh_files()

    def _load_ssh_files(self):
        if self._runtime_ssh_path is not None:
            path = self._runtime_ssh_path
            if not os.path.exists(os.path.expanduser(path)):
                raise FileNotFoundError(
                    errno.ENOENT, "No such file or directory", path
                )
            self._load_ssh_file(os.path.expanduser(path))
        elif self.load_ssh_configs:
            for path in (self._user_ssh_path, self._system_ssh_path):
                self._load_ssh_file(os.path.expanduser(path))

    def _load_ssh_file(self, path):
        if os.path.isfile(path):
            old_rules = len(self.base_ssh_config._config)
            with open(path) as fd:
                self.base_ssh_config.parse(fd)
            new_rules = len(self.base_ssh_config._config)
            msg = "Loaded {} new ssh_config rules from {!r}"
            debug(msg.format(new_rules - old_rules, path))
        else:
            debug("File not found, skipping")

    def load_shell_env(self):
        super().load_shell_env()
        aliased = {}
        for name, (section, key) in ENV_ALIASES.items():
            value = self.environ.get(name)
            if value is None:
                continue
            if key in self._env.get(section, {}):
                continue
            aliased.setdefault(section, {})[key] = value
        if aliased:
            debug("Loaded unprefixed env vars: {}".format(sorted(aliased)))
            env = copy.deepcopy(self._env)
            merge_dicts(env, aliased)
            self._set(_env=env)
            self.merge()

    @staticmethod
    def global_defaults():
        defaults = InvokeConfig.global_defaults()
        ours = {
            "allow_writer": False,
            "load_ssh_configs": True,
            "mysql": {
                "connect_timeout": 10,
                "db": None,
                "dsn": None,
                "host": "127.0.0.1",
                "password": None,
                "port": 3306,
                "socket": None,
                "tls": None,
                "user": "root",
            },
            "ssh": {
                "agent": True,
                "host": None,
                "key": None,
                "known_hosts": None,
                "no_strict_host_key": False,
                "passphrase": None,
                "port": None,
                "timeout": 10,
                "user": None,
            },
            "ssh_config_path": None,
        }
        merge_dicts(defaults, ours)
        return defaults

    def mysql_descriptor(self):
        mysql = self.mysql
        fields = dict(
            host=mysql.host,
            port=as_int(mysql.port, "mysql port") or 3306,
            socket=mysql.socket or None,
            user=mysql.user,
            password=mysql.password,
            database=mysql.db,
            tls=mysql.tls,
            connect_timeout=float(mysql.connect_timeout or 10),
        )
        if mysql.dsn:
            descriptor = MySQLDescriptor.from_dsn(mysql.dsn, **fields)
        else:
            descriptor = MySQLDescriptor(**fields)
        if not descriptor.user:
            raise ValidationFailed(
                "connection info missing: provide MYSQL_DSN or host/user parameters"  # noqa
            )
        return descriptor

    def bastion_credentials(self):
        """
        Return `.BastionCredentials` for the configured bastion, or ``None``
        when tunnelling isn't requested.
        """
        ssh = self.ssh
        if not ssh.host:
            return None
        shorthand = derive_shorthand(ssh.host)
        host = shorthand["host"]
        ssh_config = self.base_ssh_config.lookup(host)
        identities = [
            path
            for path in ssh_config.get("identityfile", [])
            if os.path.isfile(os.path.expanduser(path))
        ]
        known_hosts = ssh_config.get("userknownhostsfile", "").split()
        insecure = as_bool(ssh.no_strict_host_key)
        return BastionCredentials(
            host=ssh_config.get("hostname", host),
            port=(
                shorthand["port"]
                or as_int(ssh.port, "ssh port")
                or as_int(ssh_config.get("port"), "ssh_config port")
                or 22
            ),
            user=first_non_empty(
                shorthand["user"],
                ssh.user,
                ssh_config.get("user"),
                get_local_user(),
            ),
            key_path=expand_path(
                first_non_empty(ssh.key, identities[0] if identities else None)
            ),
            passphrase=ssh.passphrase,
            agent_socket=(
                self.environ.get("SSH_AUTH_SOCK") if as_bool(ssh.agent) else None
            ),
            known_hosts=None if insecure else expand_path(
                first_non_empty(
                    ssh.known_hosts,
                    known_hosts[0] if known_hosts else None,
                    "~/.ssh/known_hosts",
                )
            ),
            insecure=insecure,
            timeout=float(
                first_non_empty(ssh.timeout, ssh_config.get("connecttimeout"))
                or 10
            ),
        )
