import logging


log = logging.getLogger("mysql_kill")
for x in ("debug",):
    globals()[x] = getattr(log, x)


def get_local_user() -> str | None:
    """
    Return the local executing username, or ``None`` if one can't be found.
    """
    import getpass
    username = None
    try:
        username = getpass.getuser()
    except (KeyError, OSError):
        pass
    return username


def first_non_empty(*values):
    for value in values:
        if value:
            return value
    return None
