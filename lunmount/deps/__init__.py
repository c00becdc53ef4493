# This file is part of lunmount. See LICENSE file for copyright and license info.

from lunmount.util import (
    PreconditionError,
    which,
)

REQUIRED_EXECUTABLES = [
    # executable in PATH, package
    ('iscsiadm', 'open-iscsi'),
    ('lsblk', 'util-linux'),
    ('blkid', 'util-linux'),
    ('wipefs', 'util-linux'),
    ('parted', 'parted'),
    ('partprobe', 'parted'),
    ('mkfs.ext4', 'e2fsprogs'),
    ('mount', 'mount'),
    ('umount', 'mount'),
    ('df', 'coreutils'),
    ('crontab', 'cron'),
    ('systemctl', 'systemd'),
    ('systemd-escape', 'systemd'),
    ('udevadm', 'udev'),
]


class MissingDeps(Exception):
    def __init__(self, message, deps):
        self.message = message
        if isinstance(deps, str) or deps is None:
            deps = [deps]
        self.deps = [d for d in deps if d is not None]
        self.fatal = None in deps

    def __str__(self):
        if self.fatal:
            if not len(self.deps):
                return self.message + " Unresolvable."
            return (self.message +
                    " Unresolvable.  Partially resolvable with packages: %s" %
                    ' '.join(self.deps))
        else:
            return self.message + " Install packages: %s" % ' '.join(self.deps)


def check_executable(cmdname, pkg):
    if not which(cmdname):
        raise MissingDeps("Missing program '%s'." % cmdname, pkg)


def check_executables(executables=None):
    if executables is None:
        executables = REQUIRED_EXECUTABLES
    mdeps = []
    for exe, pkg in executables:
        try:
            check_executable(exe, pkg)
        except MissingDeps as e:
            mdeps.append(e)
    return mdeps


def find_missing_deps(executables=None):
    return check_executables(executables)


def missing_packages(errors):
    pkgs = []
    for e in errors:
        pkgs.extend(d for d in e.deps if d not in pkgs)
    return sorted(pkgs)


def require(executables=None):
    """Raise PreconditionError naming every missing program and package."""
    errors = find_missing_deps(executables)
    if not errors:
        return
    raise PreconditionError(
        "Missing required tools:\n%s\nFix with:\n  apt-get -qy install %s" %
        ('\n'.join('  %s' % e for e in errors),
         ' '.join(missing_packages(errors))))

# vi: ts=4 expandtab syntax=python
