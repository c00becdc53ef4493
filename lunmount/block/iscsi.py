# This file is part of lunmount. See LICENSE file for copyright and license info.

# This module wraps calls to the iscsiadm utility for examining and
# driving iSCSI sessions.  Functions prefixed with 'iscsiadm_' involve
# executing the 'iscsiadm' command in a subprocess.  The remaining
# functions handle manipulation of the iscsiadm output; parse_sessions()
# is the only place that reads 'iscsiadm --mode=session --print=3' text.

import enum
import re
import typing

import attr

from lunmount import util
from lunmount.log import LOG

DEFAULT_PORT = 3260

# iscsiadm exit codes (see iscsiadm(8) EXIT STATUS)
ISCSI_ERR_SESS_EXISTS = 15
ISCSI_ERR_NO_OBJS_FOUND = 21

ISCSI_PORTAL_REGEX = re.compile(r'^(?P<host>\S*):(?P<port>\d+)$')
IPV4_PORTAL_REGEX = re.compile(r'^([0-9]{1,3}\.){3}[0-9]{1,3}(:[0-9]+)?$')

_TARGET_RE = re.compile(r'^Target:\s+(?P<target>\S+)')
_PORTAL_RE = re.compile(r'^Current Portal:\s+(?P<portal>\S+)')
_SID_RE = re.compile(r'^SID:\s+(?P<sid>\d+)')
_CONN_STATE_RE = re.compile(r'^iSCSI Connection State:\s+(?P<state>.+)$')
_SESS_STATE_RE = re.compile(r'^iSCSI Session State:\s+(?P<state>.+)$')
_INTERNAL_STATE_RE = re.compile(
    r'^Internal iscsid Session State:\s+(?P<state>.+)$')
_LUN_RE = re.compile(
    r'^scsi(?P<host>\d+)\s+Channel\s+(?P<channel>\d+)\s+'
    r'Id\s+(?P<id>\d+)\s+Lun:\s+(?P<lun>\d+)')
_DISK_RE = re.compile(
    r'^Attached scsi disk\s+(?P<name>\S+)\s+State:\s+(?P<state>\S+)')


class SessionState(enum.Enum):
    ABSENT = 'absent'
    CONNECTING = 'connecting'
    ESTABLISHED = 'established'
    DEGRADED = 'degraded'


class SessionError(RuntimeError):
    pass


@attr.s(auto_attribs=True)
class TargetDescriptor:
    """What is needed to reach one iSCSI target.  The password is kept out
    of repr() so it cannot leak into logs."""
    name: str
    portal: str
    user: str
    password: str = attr.ib(repr=False)

    def validate(self):
        fields = ('name', 'portal', 'user', 'password')
        for field in fields:
            value = getattr(self, field)
            setattr(self, field, value.strip() if value else '')
        missing = [f for f in fields if not getattr(self, f)]
        if missing:
            raise util.InputValidationError(
                "All fields are required, missing: %s" % ', '.join(missing))
        if not portal_looks_ipv4(self.portal):
            LOG.warning("'%s' does not look like a typical IPv4 address "
                        "with optional port.", self.portal)

    @property
    def node_portal(self):
        return normalize_portal(self.portal)


@attr.s(auto_attribs=True)
class AttachedDisk:
    name: str
    state: str
    host: typing.Optional[int] = None
    channel: typing.Optional[int] = None
    id: typing.Optional[int] = None
    lun: typing.Optional[int] = None

    @property
    def path(self):
        return '/dev/%s' % self.name

    @property
    def running(self):
        return self.state.lower() == 'running'


@attr.s(auto_attribs=True)
class Session:
    target: str
    portal: str
    sid: typing.Optional[int] = None
    connection_state: typing.Optional[str] = None
    session_state: typing.Optional[str] = None
    internal_state: typing.Optional[str] = None
    disks: typing.List[AttachedDisk] = attr.Factory(list)

    @property
    def state(self):
        sstate = (self.session_state or '').upper()
        cstate = (self.connection_state or '').upper()
        if sstate == 'LOGGED_IN' and cstate == 'LOGGED IN':
            return SessionState.ESTABLISHED
        if sstate == 'IN_LOGIN' or cstate == 'IN LOGIN':
            return SessionState.CONNECTING
        return SessionState.DEGRADED

    @property
    def running_disks(self):
        return [d for d in self.disks if d.running]

    @property
    def operational(self):
        """logged in with every attached disk in 'running' state"""
        return (self.state == SessionState.ESTABLISHED and
                all(d.running for d in self.disks))


def normalize_portal(portal):
    """return portal as HOST:PORT, adding the default port if missing"""
    if _is_bare_ipv6(portal):
        return '[%s]:%s' % (portal, DEFAULT_PORT)
    if ISCSI_PORTAL_REGEX.match(portal):
        return portal
    return '%s:%s' % (portal, DEFAULT_PORT)


def _is_bare_ipv6(portal):
    # 'fe80::1' matches HOST:PORT but has no port
    return portal.count(':') > 1 and not portal.startswith('[')


def portal_looks_ipv4(portal):
    return IPV4_PORTAL_REGEX.match(portal) is not None


def portal_host(portal):
    """strip port and target portal group tag from a portal string"""
    portal = portal.split(',', 1)[0]
    m = ISCSI_PORTAL_REGEX.match(portal)
    if m and not _is_bare_ipv6(portal):
        portal = m.group('host')
    return portal.strip('[]')


def same_portal(a, b):
    return portal_host(a) == portal_host(b)


def parse_sessions(output):
    """Parse 'iscsiadm --mode=session --print=3' into Session records.

    A target logged in through more than one portal yields one Session
    per portal.
    """
    sessions = []
    target = None
    current = None
    pending_lun = {}
    for raw in output.splitlines():
        line = raw.strip()
        if not line:
            continue
        m = _TARGET_RE.match(line)
        if m:
            target = m.group('target')
            current = None
            continue
        m = _PORTAL_RE.match(line)
        if m and target:
            current = Session(target=target,
                              portal=m.group('portal').split(',', 1)[0])
            sessions.append(current)
            pending_lun = {}
            continue
        if current is None:
            continue
        m = _SID_RE.match(line)
        if m:
            current.sid = int(m.group('sid'))
            continue
        m = _CONN_STATE_RE.match(line)
        if m:
            current.connection_state = m.group('state').strip()
            continue
        m = _SESS_STATE_RE.match(line)
        if m:
            current.session_state = m.group('state').strip()
            continue
        m = _INTERNAL_STATE_RE.match(line)
        if m:
            current.internal_state = m.group('state').strip()
            continue
        m = _LUN_RE.match(line)
        if m:
            pending_lun = {k: int(v) for k, v in m.groupdict().items()}
            continue
        m = _DISK_RE.match(line)
        if m:
            current.disks.append(AttachedDisk(
                name=m.group('name'), state=m.group('state'),
                **pending_lun))
            pending_lun = {}
    return sessions


def parse_nodes(output):
    """Parse 'iscsiadm --mode=node' into a list of (portal, target)."""
    nodes = []
    for line in output.splitlines():
        toks = line.split()
        if len(toks) < 2:
            continue
        nodes.append((toks[0].split(',', 1)[0], toks[1]))
    return nodes


def parse_node_record(output):
    """Parse 'iscsiadm --mode=node --op=show' name = value lines."""
    record = {}
    for line in output.splitlines():
        if line.startswith('#') or ' = ' not in line:
            continue
        key, value = line.split(' = ', 1)
        record[key.strip()] = value.strip()
    return record


def iscsiadm_sessions():
    cmd = ["iscsiadm", "--mode=session", "--print=3"]
    # rc 21 indicates no sessions currently exist, which is not
    # inherently incorrect (if not logged in yet)
    out, _ = util.subp(cmd, rcs=[0, ISCSI_ERR_NO_OBJS_FOUND], capture=True,
                       log_captured=True)
    return out


def get_sessions(target=None):
    sessions = parse_sessions(iscsiadm_sessions())
    if target is not None:
        sessions = [s for s in sessions if s.target == target]
    return sessions


def session_state(target, portal=None):
    """Collapse the sessions of target into one SessionState.

    With several sessions the worst state wins, so one failed path is
    reported as degraded.
    """
    sessions = [s for s in get_sessions(target)
                if portal is None or same_portal(s.portal, portal)]
    if not sessions:
        return SessionState.ABSENT
    states = [s.state for s in sessions]
    for state in (SessionState.DEGRADED, SessionState.CONNECTING):
        if state in states:
            return state
    return SessionState.ESTABLISHED


def iscsiadm_discovery(portal):
    # only supported type for now
    type = 'sendtargets'

    if not portal:
        raise ValueError("Portal must be specified for discovery")

    cmd = ["iscsiadm", "--mode=discovery", "--type=%s" % type,
           "--portal=%s" % portal]

    try:
        util.subp(cmd, capture=True, log_captured=True)
    except util.ProcessExecutionError as e:
        LOG.warning("iscsiadm_discovery to %s failed with exit code %s",
                    portal, e.exit_code)
        raise


def _node_update(target, portal, name, value, logstring=False):
    cmd = ['iscsiadm', '--mode=node', '--targetname=%s' % target,
           '--portal=%s' % portal, '--op=update',
           '--name=%s' % name, '--value=%s' % value]
    if logstring:
        logstring = ' '.join(cmd[:-1] + ['--value=HIDDEN'])
    util.subp(cmd, capture=True, log_captured=not logstring,
              logstring=logstring)


def iscsiadm_authenticate(target, portal, user=None, password=None):
    LOG.debug('iscsiadm_authenticate: target=%s portal=%s '
              'user=%s password=%s', target, portal, user,
              "HIDDEN" if password else None)

    if user or password:
        _node_update(target, portal, 'node.session.auth.authmethod', 'CHAP')

        if user:
            _node_update(target, portal, 'node.session.auth.username', user)

        if password:
            _node_update(target, portal, 'node.session.auth.password',
                         password, logstring=True)


def iscsiadm_set_automatic(target, portal):
    LOG.debug('iscsiadm_set_automatic: target=%s portal=%s', target, portal)
    _node_update(target, portal, 'node.startup', 'automatic')


def iscsiadm_show_node(target, portal):
    cmd = ['iscsiadm', '--mode=node', '--targetname=%s' % target,
           '--portal=%s' % portal, '--op=show']
    # the record holds the CHAP secret, keep it out of the debug log
    out, _ = util.subp(cmd, capture=True)
    return parse_node_record(out)


def iscsiadm_nodes():
    cmd = ['iscsiadm', '--mode=node']
    out, _ = util.subp(cmd, rcs=[0, ISCSI_ERR_NO_OBJS_FOUND], capture=True,
                       log_captured=True)
    return parse_nodes(out)


def iscsiadm_login(target, portal):
    LOG.debug('iscsiadm_login: target=%s portal=%s', target, portal)

    cmd = ['iscsiadm', '--mode=node', '--targetname=%s' % target,
           '--portal=%s' % portal, '--login']
    # logging in to an already active session is a no-op
    util.subp(cmd, rcs=[0, ISCSI_ERR_SESS_EXISTS], capture=True,
              log_captured=True)


def iscsiadm_logout(target, portal=None):
    LOG.debug('iscsiadm_logout: target=%s portal=%s', target, portal)

    cmd = ['iscsiadm', '--mode=node', '--targetname=%s' % target]
    if portal:
        cmd.append('--portal=%s' % portal)
    cmd.append('--logout')
    util.subp(cmd, rcs=[0, ISCSI_ERR_NO_OBJS_FOUND], capture=True,
              log_captured=True)


def iscsiadm_rescan(sid=None):
    cmd = ['iscsiadm', '--mode=session']
    if sid is not None:
        cmd.append('--sid=%s' % sid)
    cmd.append('--rescan')
    util.subp(cmd, rcs=[0, ISCSI_ERR_NO_OBJS_FOUND], capture=True,
              log_captured=True)


def iscsiadm_delete_node(target, portal=None):
    LOG.debug('iscsiadm_delete_node: target=%s portal=%s', target, portal)
    cmd = ['iscsiadm', '--mode=node', '--targetname=%s' % target]
    if portal:
        cmd.append('--portal=%s' % portal)
    cmd.append('--op=delete')
    util.subp(cmd, rcs=[0, ISCSI_ERR_NO_OBJS_FOUND], capture=True,
              log_captured=True)


def verify_node_record(target, portal, user):
    """Read the node record back and check what connect() wrote to it."""
    try:
        record = iscsiadm_show_node(target, portal)
    except util.ProcessExecutionError as e:
        raise SessionError("Node configuration for %s at %s not saved "
                           "properly: %s" % (target, portal, e.stderr))
    expected = {
        'node.startup': 'automatic',
        'node.session.auth.authmethod': 'CHAP',
        'node.session.auth.username': user,
    }
    wrong = ['%s=%s (expected %s)' % (k, record.get(k), v)
             for k, v in expected.items() if record.get(k) != v]
    if wrong:
        raise SessionError("Node configuration for %s at %s did not "
                           "read back: %s" % (target, portal,
                                              ', '.join(wrong)))
    return record


def reconnect(target, portal, state=None):
    """Bring the session for target back to a working state.

    An absent session is logged in.  A degraded session is logged out
    first so the login builds a fresh one.  A session that is still
    connecting is left for iscsid to finish.
    """
    if state is None:
        state = session_state(target, portal)
    if state == SessionState.CONNECTING:
        LOG.info('Session for %s is still connecting, not interfering',
                 target)
        return state
    if state == SessionState.DEGRADED:
        LOG.warning('Session for %s is degraded, logging out before '
                    'reconnecting', target)
        iscsiadm_logout(target, portal)
    if state != SessionState.ESTABLISHED:
        iscsiadm_login(target, portal)
    return session_state(target, portal)


def connect(descriptor):
    """Configure the node record for descriptor and log in.

    Discovery failures are only logged since the node record may already
    exist.  Any failure to configure or log in is fatal.
    """
    target = descriptor.name
    portal = descriptor.node_portal

    LOG.info("Discovering targets on %s", portal)
    try:
        iscsiadm_discovery(portal)
    except util.ProcessExecutionError:
        LOG.warning("Discovery on %s failed, using the existing node "
                    "record for %s", portal, target)

    try:
        LOG.info("Configuring CHAP authentication for %s", target)
        iscsiadm_authenticate(target, portal, descriptor.user,
                              descriptor.password)
        LOG.info("Configuring %s for automatic startup", target)
        iscsiadm_set_automatic(target, portal)
    except util.ProcessExecutionError as e:
        raise SessionError("Unable to configure node record for %s at %s: "
                           "%s" % (target, portal, e.stderr))

    verify_node_record(target, portal, descriptor.user)

    state = session_state(target, portal)
    if state == SessionState.ESTABLISHED:
        LOG.info("Session for %s already established", target)
        return state

    LOG.info("Logging into %s at %s", target, portal)
    try:
        state = reconnect(target, portal, state=state)
    except util.ProcessExecutionError as e:
        raise SessionError("Unable to log in to %s at %s: %s" %
                           (target, portal, e.stderr))
    if state == SessionState.ABSENT:
        raise SessionError("Login to %s at %s did not create a session" %
                           (target, portal))
    return state

# vi: ts=4 expandtab syntax=python
