# This file is part of lunmount. See LICENSE file for copyright and license info.

# Thin wrappers around systemctl and systemd-escape.

import os

from lunmount import util
from lunmount.log import LOG

ISCSI_SERVICES = ['iscsid.service', 'open-iscsi.service']


def systemctl(*args, **kwargs):
    return util.subp(['systemctl'] + list(args), capture=True, **kwargs)


def unit_exists(unit):
    out, _ = systemctl('list-unit-files', '--no-legend', unit, rcs=[0, 1])
    return any(line.split()[0] == unit
               for line in out.splitlines() if line.strip())


def is_enabled(unit):
    try:
        systemctl('is-enabled', '--quiet', unit)
    except util.ProcessExecutionError:
        return False
    return True


def is_active(unit):
    try:
        systemctl('is-active', '--quiet', unit)
    except util.ProcessExecutionError:
        return False
    return True


def status_text(unit, lines=5):
    # systemctl status exits non-zero for inactive units
    out, _ = systemctl('status', unit, '--no-pager', '--lines=%s' % lines,
                       rcs=[0, 1, 2, 3, 4])
    return out


def daemon_reload():
    if not util.uses_systemd():
        LOG.debug('Not running under systemd, skipping daemon-reload')
        return
    systemctl('daemon-reload')


def find_service(candidates=None):
    """Return the first of candidates that is installed, or None."""
    if candidates is None:
        candidates = ISCSI_SERVICES
    for unit in candidates:
        if unit_exists(unit):
            return unit
    return None


def ensure_service(candidates=None, settle=2):
    """Make sure the first installed service of candidates is enabled and
    running.

    :raises util.PreconditionError: none of candidates is installed or the
        service does not come up within 'settle' seconds.
    """
    if candidates is None:
        candidates = ISCSI_SERVICES
    unit = find_service(candidates)
    if unit is None:
        raise util.PreconditionError(
            "Neither %s found or accessible. Please check if open-iscsi is "
            "properly installed:\n%s" % (
                ' nor '.join(candidates),
                '\n'.join('  systemctl status %s' % u for u in candidates)))
    LOG.info("Found iSCSI service: %s", unit)

    if not is_enabled(unit):
        LOG.info("%s is not enabled. Enabling it now", unit)
        systemctl('enable', unit)
    else:
        LOG.debug("%s is already enabled", unit)

    if not is_active(unit):
        LOG.info("%s is not running. Starting it now", unit)
        systemctl('start', unit)
        if not util.wait_for(lambda: is_active(unit), timeout=settle,
                             description='%s active' % unit):
            raise util.PreconditionError(
                "Failed to start %s\n%s" % (unit, status_text(unit)))
        LOG.info("%s started successfully", unit)
    else:
        LOG.debug("%s is already running", unit)
    return unit


def escape_path(path, suffix):
    """name of the unit systemd derives from path, e.g. mnt-backup.mount"""
    out, _ = util.subp(['systemd-escape', '--path', '--suffix=%s' % suffix,
                        path], capture=True)
    return out.strip()


def remove_unit(unit_dir, unit):
    """Stop, disable and delete unit_dir/unit if the file exists.

    :return: True if a unit file was removed.
    """
    unit_file = os.path.join(unit_dir, unit)
    if not os.path.isfile(unit_file):
        return False
    LOG.info("Stopping and disabling unit: %s", unit)
    for action in ('stop', 'disable'):
        try:
            systemctl(action, unit)
        except util.ProcessExecutionError as e:
            LOG.warning("systemctl %s %s failed: %s", action, unit,
                        e.stderr)
    util.del_file(unit_file)
    return True

# vi: ts=4 expandtab syntax=python
