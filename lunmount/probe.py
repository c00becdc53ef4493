# This file is part of lunmount. See LICENSE file for copyright and license info.

"""One health monitor cycle for a served mount.

The session and the mount are repaired independently: a session can be
healthy while its mount was removed, and a mount can survive a short
portal outage.  What to repair is decided from state.observe(), and every
outcome goes to the shared event log.
"""

import time
import typing

import attr

from lunmount import state, util
from lunmount.block import iscsi
from lunmount.log import LOG


@attr.s(auto_attribs=True)
class ProbeResult:
    session_state: iscsi.SessionState
    reconnect_attempted: bool = False
    reconnected: typing.Optional[bool] = None
    mount_attempted: bool = False
    mounted: bool = False


def check_and_restore_mount(mount_path, events, fstab='/etc/fstab',
                            found=None):
    """Mount mount_path if it is not mounted.

    found is a state.observe() result that already covers mount_path.

    :return: (mount attempted, mounted afterwards)
    """
    if found is None:
        found = state.observe(mount_paths=[mount_path])
    if found.mounted:
        return False, True
    events.info("Mount point %s not mounted. Attempting to mount...",
                mount_path)
    opts = [] if fstab == '/etc/fstab' else ['--fstab', fstab]
    try:
        util.do_mount(mount_path, opts=opts)
    except util.ProcessExecutionError as e:
        LOG.debug("mount %s failed: %s", mount_path, e.stderr)
    if state.observe(mount_paths=[mount_path]).mounted:
        events.info("Successfully mounted %s", mount_path)
        return True, True
    events.info("Failed to mount %s", mount_path)
    return True, False


def run_probe(target, portal, mount_path, events, fstab='/etc/fstab',
              settle=2, sleep=None):
    """One monitor cycle: repair the session, then repair the mount.

    The mount is always checked, even when the session could not be
    repaired.  A failing session query counts as an absent session.
    """
    if sleep is None:
        sleep = time.sleep
    portal = iscsi.normalize_portal(portal)
    found = state.observe(target, [mount_path], portal=portal)
    for err in found.errors:
        events.info("Unable to query iSCSI sessions: %s", err)
    current = found.session_state
    result = ProbeResult(session_state=current)

    if current == iscsi.SessionState.ABSENT:
        events.info("iSCSI session for %s not found. Attempting to "
                    "reconnect...", target)
        result.reconnect_attempted = True
    elif current == iscsi.SessionState.DEGRADED:
        events.info("iSCSI session for %s exists but is not in running "
                    "state. Attempting to reconnect...", target)
        result.reconnect_attempted = True
    elif current == iscsi.SessionState.CONNECTING:
        events.info("iSCSI session for %s is still connecting", target)
    elif not all(s.operational for s in found.sessions):
        events.info("iSCSI session for %s has devices that are not in "
                    "running state. Requesting a rescan", target)
        try:
            iscsi.iscsiadm_rescan()
        except util.ProcessExecutionError as e:
            events.info("Rescan of %s failed: exit code %s", target,
                        e.exit_code)

    if result.reconnect_attempted:
        try:
            new_state = iscsi.reconnect(target, portal, state=current)
        except util.ProcessExecutionError as e:
            LOG.debug("reconnect to %s failed: %s", target, e.stderr)
            new_state = iscsi.SessionState.ABSENT
        result.reconnected = new_state != iscsi.SessionState.ABSENT
        if result.reconnected:
            events.info("Successfully reconnected to %s", target)
        else:
            events.info("Failed to reconnect to %s", target)
        # give the kernel a moment to expose the disk again
        sleep(settle)
        found = state.observe(mount_paths=[mount_path])

    result.mount_attempted, result.mounted = check_and_restore_mount(
        mount_path, events, fstab=fstab, found=found)
    return result

# vi: ts=4 expandtab syntax=python
