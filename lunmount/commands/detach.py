# This file is part of lunmount. See LICENSE file for copyright and license info.
"""Remove an attached iSCSI LUN, its mounts, fstab lines and monitors."""

import os
import sys

import attr

from lunmount import block, fstab, log, monitor, state, util
from lunmount.block import iscsi
from lunmount.log import LOG
from . import command_config, populate_one_subcmd


@attr.s(auto_attribs=True)
class TeardownReport:
    """Failed steps and residual items, per category."""
    failures: dict = attr.Factory(dict)
    residuals: dict = attr.Factory(dict)

    def fail(self, category, message):
        self.failures.setdefault(category, []).append(message)

    @property
    def ok(self):
        return not any(self.failures.values()) and \
            not any(self.residuals.values())

    def render(self):
        lines = ["Teardown summary:"]
        for category in state.CATEGORIES:
            left = self.residuals.get(category, [])
            failed = self.failures.get(category, [])
            lines.append("  %-10s %s" % (category + ':',
                                         'FAIL' if left or failed else 'PASS'))
            for item in failed:
                lines.append("    step failed: %s" % item)
            for item in left:
                lines.append("    remaining: %s" % item)
        for item in self.failures.get('other', []):
            lines.append("  step failed: %s" % item)
        return '\n'.join(lines) + '\n'


def _step(report, category, description, func, *args, **kwargs):
    """Run one cleanup step; a failure is recorded, never raised."""
    try:
        return func(*args, **kwargs)
    except (util.ProcessExecutionError, IOError, OSError, ValueError) as e:
        LOG.warning("%s failed: %s", description, e)
        report.fail(category, "%s: %s" % (description, e))
    return None


def _stale_disks(before, target, report):
    """Disks of the earlier sessions that are safe to drop from the kernel.

    A disk still listed by a live session of target, or with anything on
    it mounted, is in use and is kept.
    """
    disks = [d for s in before.sessions for d in s.disks]
    if not disks:
        return []
    try:
        live = iscsi.get_sessions(target)
    except util.ProcessExecutionError as e:
        report.fail('sessions', 'querying sessions after logout: %s' %
                    e.exit_code)
        return []
    in_session = set(d.name for s in live for d in s.disks)
    stale = []
    for disk in disks:
        if disk.name in in_session:
            LOG.warning("%s still belongs to a live session of %s, "
                        "not removing it", disk.name, target)
            continue
        if not block.is_block_device(disk.path):
            continue
        try:
            mounts = block.get_mountpoints(disk.path)
        except util.ProcessExecutionError as e:
            LOG.warning("Unable to list mounts of %s, not removing it: %s",
                        disk.path, e.stderr)
            continue
        if mounts:
            LOG.warning("%s is still mounted at %s, not removing it",
                        disk.name, ', '.join(mounts))
            continue
        stale.append(disk.name)
    return stale


def detach(cfg, target=None, portal=None, mount_paths=None, out=None):
    """Undo everything attach did for target and mount_paths.

    Every step runs even if an earlier one failed; the result is checked
    by discovering the state again afterwards.
    """
    if out is None:
        out = sys.stdout
    if os.geteuid() != 0:
        raise util.PreconditionError("This command must be run as root")
    target = target or cfg.target.name
    portal = portal or cfg.target.portal
    if not mount_paths and cfg.target.mount_path:
        mount_paths = [cfg.target.mount_path]
    if not target and not mount_paths:
        raise util.InputValidationError(
            "A target IQN or at least one mount path is required.")
    if portal:
        portal = iscsi.normalize_portal(portal)

    before = state.discover(target, mount_paths, fstab_file=cfg.fstab,
                            monitor_dir=cfg.monitor_dir)
    paths = before.mount_paths
    LOG.info("Recognized mount paths: %s", ', '.join(paths) or 'none')
    report = TeardownReport()
    events = log.event_log(cfg.monitor_log)

    # 1. fstab first, so nothing remounts what is being removed
    if paths:
        _step(report, 'fstab', 'removing fstab entries',
              fstab.remove_entries, cfg.fstab, paths)
        for path in paths:
            _step(report, 'fstab', 'removing mount units for %s' % path,
                  fstab.cleanup_units, cfg.unit_dir, path)

    # 2. unmount
    for path in paths:
        if util.is_mounted(path):
            LOG.info("Unmounting %s", path)
            _step(report, 'mounts', 'unmounting %s' % path,
                  util.do_umount, path)

    if target:
        # 3. log out
        if before.sessions:
            LOG.info("Logging out of %s", target)
            _step(report, 'sessions', 'logging out of %s' % target,
                  iscsi.iscsiadm_logout, target, portal)
        # 4. node records
        if before.nodes:
            LOG.info("Deleting node records for %s", target)
            _step(report, 'sessions', 'deleting node records for %s' % target,
                  iscsi.iscsiadm_delete_node, target, portal)
        # 5. devices the kernel kept after logout
        for name in _stale_disks(before, target, report):
            _step(report, 'other', 'removing stale device %s' % name,
                  block.delete_scsi_device, name)

    # 6. monitors
    for path in paths:
        try:
            name = monitor.monitor_name(path)
        except util.InputValidationError:
            continue
        _step(report, 'artifacts', 'removing monitor %s' % name,
              monitor.remove, name, cfg.monitor_dir)

    # 7. verify by looking again
    after = state.discover(target, paths, fstab_file=cfg.fstab,
                           monitor_dir=cfg.monitor_dir)
    report.residuals = after.residuals()
    for err in after.errors:
        report.fail('other', err)

    out.write(report.render())
    events.info("Detached %s from %s: %s", target or '(no target)',
                ', '.join(paths) or '(no mount path)',
                'clean' if report.ok else 'residuals remain')
    return report


def detach_main(args):
    cfg = command_config(args)
    report = detach(cfg, target=args.target, portal=args.portal,
                    mount_paths=args.mount_paths)
    return 0 if report.ok else 1


CMD_ARGUMENTS = (
    (('-t', '--target'),
     {'help': 'IQN of the target to detach', 'metavar': 'IQN',
      'action': 'store', 'default': None}),
    (('-p', '--portal'),
     {'help': 'portal address, HOST or HOST:PORT', 'action': 'store',
      'default': None}),
    (('-m', '--mount-path'),
     {'help': 'mount path to remove, may be repeated', 'metavar': 'PATH',
      'action': 'append', 'dest': 'mount_paths', 'default': None}),
)


def POPULATE_SUBCMD(parser):
    populate_one_subcmd(parser, CMD_ARGUMENTS, detach_main)
    parser.description = __doc__

# vi: ts=4 expandtab syntax=python
