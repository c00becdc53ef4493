# This file is part of lunmount. See LICENSE file for copyright and license info.

"""Discover what is currently attached, registered and monitored.

Every entry point reads the host through this module.  attach checks what
an earlier run left behind and reads its own result back with discover(),
detach verifies a teardown with it, status reports it, and each monitor
cycle decides what to repair from observe(), the session and mount part
of the same queries.
"""

import typing

import attr

from lunmount import block, fstab, monitor, util
from lunmount.block import iscsi
from lunmount.log import LOG

CATEGORIES = ('sessions', 'fstab', 'mounts', 'artifacts')


@attr.s(auto_attribs=True)
class AttachmentState:
    target: typing.Optional[str] = None
    mount_paths: typing.List[str] = attr.Factory(list)
    sessions: typing.List[iscsi.Session] = attr.Factory(list)
    nodes: typing.List[typing.Tuple[str, str]] = attr.Factory(list)
    device_uuids: typing.List[str] = attr.Factory(list)
    fstab_entries: typing.List[fstab.FstabData] = attr.Factory(list)
    mounted: typing.List[str] = attr.Factory(list)
    artifacts: typing.List[monitor.MonitorArtifact] = attr.Factory(list)
    cron_entries: typing.List[str] = attr.Factory(list)
    errors: typing.List[str] = attr.Factory(list)

    @property
    def session_state(self):
        if not self.sessions:
            return iscsi.SessionState.ABSENT
        states = [s.state for s in self.sessions]
        for state in (iscsi.SessionState.DEGRADED,
                      iscsi.SessionState.CONNECTING):
            if state in states:
                return state
        return iscsi.SessionState.ESTABLISHED

    def residuals(self):
        """category -> what is left of it, for every category in CATEGORIES"""
        return {
            'sessions': ['%s (sid %s)' % (s.target, s.sid)
                         for s in self.sessions],
            'fstab': [fstab.fstab_line_for_data(e).rstrip('\n')
                      for e in self.fstab_entries],
            'mounts': list(self.mounted),
            'artifacts': ([a.script for a in self.artifacts] +
                          list(self.cron_entries)),
        }

    def as_dict(self):
        return {
            'target': self.target,
            'state': self.session_state.name.lower(),
            'mount_paths': list(self.mount_paths),
            'sessions': [{
                'target': s.target, 'portal': s.portal, 'sid': s.sid,
                'state': s.state.name.lower(),
                'disks': [{'name': d.name, 'state': d.state, 'lun': d.lun,
                           'path': d.path} for d in s.disks],
            } for s in self.sessions],
            'nodes': [{'portal': p, 'target': t} for p, t in self.nodes],
            'device_uuids': list(self.device_uuids),
            'fstab': [e._asdict() for e in self.fstab_entries],
            'mounted': list(self.mounted),
            'artifacts': [{'name': a.name, 'script': a.script,
                           'mount_path': a.mount_path}
                          for a in self.artifacts],
            'cron': list(self.cron_entries),
            'errors': list(self.errors),
        }


def _device_uuids(sessions):
    uuids = []
    for session in sessions:
        for disk in session.disks:
            try:
                infos = block._lsblock([disk.path])
            except util.ProcessExecutionError as e:
                LOG.debug("lsblk %s failed: %s", disk.path, e.stderr)
                continue
            uuids.extend(i.uuid for i in infos
                         if i.uuid and i.uuid not in uuids)
    return uuids


def _spec_uuid(spec):
    if spec and spec.upper().startswith('UUID='):
        return spec.split('=', 1)[1].strip('"')
    return None


def _query_sessions(state, target, portal=None):
    try:
        sessions = iscsi.get_sessions(target)
    except util.ProcessExecutionError as e:
        state.errors.append("iscsiadm session query failed: %s" %
                            e.exit_code)
        return
    state.sessions = [s for s in sessions
                      if portal is None or iscsi.same_portal(s.portal, portal)]


def _mounted(paths):
    return [path for path in paths if util.is_mounted(path)]


def observe(target=None, mount_paths=None, portal=None):
    """Collect only the sessions of target and which mount_paths are mounted.

    This is the part of discover() a monitor cycle acts on.  With portal
    set, sessions through other portals are ignored.
    """
    state = AttachmentState(target=target, mount_paths=[
        fstab.normalize_path(p) for p in (mount_paths or [])])
    if target:
        _query_sessions(state, target, portal)
    state.mounted = _mounted(state.mount_paths)
    return state


def discover(target=None, mount_paths=None, fstab_file='/etc/fstab',
             monitor_dir=monitor.MONITOR_DIR, query_cron=True):
    """Collect the AttachmentState for target and mount_paths.

    Besides the given mount paths, a mount path is recognized when a
    monitor script for target names it, or when its fstab line refers to
    a filesystem on one of the disks target currently exposes.  Failing
    queries are recorded in state.errors instead of raising.
    """
    state = AttachmentState(target=target)
    paths = [fstab.normalize_path(p) for p in (mount_paths or [])]

    if target:
        _query_sessions(state, target)
        try:
            state.nodes = [n for n in iscsi.iscsiadm_nodes()
                           if n[1] == target]
        except util.ProcessExecutionError as e:
            state.errors.append("iscsiadm node query failed: %s" %
                                e.exit_code)

    artifacts = monitor.find_artifacts(monitor_dir)
    for art in artifacts:
        if target and art.target == target and art.mount_path:
            path = fstab.normalize_path(art.mount_path)
            if path not in paths:
                paths.append(path)

    state.device_uuids = _device_uuids(state.sessions)
    for entry in fstab.load_entries(fstab_file):
        if (_spec_uuid(entry.spec) in state.device_uuids and
                entry.path.startswith('/')):
            path = fstab.normalize_path(entry.path)
            if path not in paths:
                paths.append(path)

    state.mount_paths = paths
    state.mounted = _mounted(paths)
    names = set()
    for path in paths:
        state.fstab_entries.extend(fstab.entries_for_path(fstab_file, path))
        try:
            names.add(monitor.monitor_name(path))
        except util.InputValidationError:
            pass

    state.artifacts = [a for a in artifacts if a.name in names]
    if query_cron:
        try:
            state.cron_entries = [line for line in monitor.cron_entries()
                                  if any(monitor._is_tagged(line, n)
                                         for n in names)]
        except util.ProcessExecutionError as e:
            state.errors.append("crontab query failed: %s" % e.exit_code)
    return state


def describe(state):
    """human readable report of state"""
    lines = ["Target: %s" % (state.target or '(any)'),
             "Session state: %s" % state.session_state.name.lower()]
    for s in state.sessions:
        lines.append("  session %s on %s: %s" % (s.sid, s.portal,
                                                 s.state.name.lower()))
        for d in s.disks:
            lines.append("    lun %s %s (%s)" % (d.lun, d.path, d.state))
    for portal, target in state.nodes:
        lines.append("  node record %s %s" % (portal, target))
    lines.append("Mount paths: %s" % (', '.join(state.mount_paths) or
                                      'none'))
    for entry in state.fstab_entries:
        lines.append("  fstab: %s" %
                     fstab.fstab_line_for_data(entry).rstrip('\n'))
    for path in state.mount_paths:
        lines.append("  %s: %s" % (
            path, 'mounted' if path in state.mounted else 'not mounted'))
    for art in state.artifacts:
        lines.append("  monitor script: %s" % art.script)
    for line in state.cron_entries:
        lines.append("  cron: %s" % line)
    for err in state.errors:
        lines.append("Error: %s" % err)
    return '\n'.join(lines) + '\n'

# vi: ts=4 expandtab syntax=python
