# This file is part of lunmount. See LICENSE file for copyright and license info.

"""Health monitor for one served mount.

Provisioning installs two artifacts per mount path, both named after the
last segment of the path: an executable probe script and a crontab line
that runs it every cycle.  The script only re-invokes 'lunmount monitor'
with fixed arguments, so the repair logic lives in lunmount.probe.

Each probe run is short lived and stateless apart from the shared event
log.  Overlapping runs are harmless because logging in to an active
session and mounting a mounted path are both no-ops.
"""

import os
import shlex
import sys
import typing

import attr

from lunmount import util
from lunmount.log import LOG

MONITOR_DIR = '/usr/local/bin'
MONITOR_LOG = '/var/log/iscsi-monitor.log'
CRON_SCHEDULE = '*/1 * * * *'
SCRIPT_PREFIX = 'check-iscsi-session-'
SCRIPT_SUFFIX = '.sh'
CRON_TAG = '# iSCSI monitor for %s'

SCRIPT_TEMPLATE = """\
#!/bin/sh
# Auto-generated iSCSI session and mount monitor for ${name}
exec ${python} -m lunmount monitor --target ${target} --portal ${portal} \\
    --mount-path ${mount_path} --fstab ${fstab} --log ${log}
"""

# crontab -l exits 1 when the user has no crontab yet
CRONTAB_RC_EMPTY = 1


@attr.s(auto_attribs=True)
class MonitorArtifact:
    name: str
    script: str
    cron_line: typing.Optional[str] = None
    mount_path: typing.Optional[str] = None
    target: typing.Optional[str] = None
    portal: typing.Optional[str] = None


def monitor_name(mount_path):
    name = os.path.basename(os.path.normpath(mount_path))
    if not name or name in ('.', '..', os.path.sep):
        raise util.InputValidationError(
            "Cannot derive a monitor name from mount path '%s'" % mount_path)
    return name


def script_path(monitor_dir, name):
    return os.path.join(monitor_dir, SCRIPT_PREFIX + name + SCRIPT_SUFFIX)


def cron_tag(name):
    return CRON_TAG % name


def _cron_escape(text):
    # cron turns an unescaped % in the command into a newline
    return text.replace('%', '\\%')


def cron_line(script, name, schedule=CRON_SCHEDULE):
    return '%s %s %s' % (schedule, _cron_escape(shlex.quote(script)),
                         _cron_escape(cron_tag(name)))


def _is_tagged(line, name):
    # exact suffix match so 'backup' never claims the line of 'backup2'
    return line.rstrip().endswith(_cron_escape(cron_tag(name)))


def render_script(name, target, portal, mount_path, fstab, log_file,
                  python=None):
    if python is None:
        python = sys.executable or 'python3'
    params = {
        'name': name,
        'python': shlex.quote(python),
        'target': shlex.quote(target),
        'portal': shlex.quote(portal),
        'mount_path': shlex.quote(mount_path),
        'fstab': shlex.quote(fstab),
        'log': shlex.quote(log_file),
    }
    return util.render_string(SCRIPT_TEMPLATE, params)


def parse_script(content):
    """Recover the arguments a generated script passes to the monitor."""
    args = {}
    joined = content.replace('\\\n', ' ')
    for line in joined.splitlines():
        line = line.strip()
        if not line.startswith('exec '):
            continue
        toks = shlex.split(line)
        for flag, key in (('--target', 'target'), ('--portal', 'portal'),
                          ('--mount-path', 'mount_path'),
                          ('--fstab', 'fstab'), ('--log', 'log')):
            if flag in toks[:-1]:
                args[key] = toks[toks.index(flag) + 1]
    return args


def read_crontab():
    out, _ = util.subp(['crontab', '-l'], rcs=[0, CRONTAB_RC_EMPTY],
                       capture=True)
    return out


def write_crontab(content):
    util.subp(['crontab', '-'], data=content, capture=True)


def cron_entries(name=None):
    lines = read_crontab().splitlines()
    if name is None:
        tag = CRON_TAG.split('%s')[0]
        return [line for line in lines if tag in line]
    return [line for line in lines if _is_tagged(line, name)]


def install_cron(script, name, schedule=CRON_SCHEDULE):
    """Add the cron line for name, replacing any earlier one."""
    lines = [line for line in read_crontab().splitlines()
             if not _is_tagged(line, name)]
    line = cron_line(script, name, schedule)
    lines.append(line)
    write_crontab('\n'.join(lines) + '\n')
    LOG.info("Installed cron entry: %s", line)
    return line


def remove_cron(name):
    """Remove every cron line tagged for name.  Returns the removed lines."""
    lines = read_crontab().splitlines()
    removed = [line for line in lines if _is_tagged(line, name)]
    if removed:
        kept = [line for line in lines if not _is_tagged(line, name)]
        write_crontab('\n'.join(kept) + '\n' if kept else '')
        for line in removed:
            LOG.info("Removed cron entry: %s", line)
    return removed


def install(target, portal, mount_path, monitor_dir=MONITOR_DIR,
            log_file=MONITOR_LOG, schedule=CRON_SCHEDULE, fstab='/etc/fstab'):
    """Write the probe script for mount_path and schedule it.

    Re-installing for the same mount path overwrites the script and
    replaces the cron line, never duplicating either.
    """
    name = monitor_name(mount_path)
    script = script_path(monitor_dir, name)
    util.write_file(script, render_script(name, target, portal, mount_path,
                                          fstab, log_file), mode=0o755)
    LOG.info("Wrote monitor script %s", script)
    line = install_cron(script, name, schedule)
    return MonitorArtifact(name=name, script=script, cron_line=line,
                           mount_path=mount_path, target=target,
                           portal=portal)


def remove(name, monitor_dir=MONITOR_DIR):
    """Delete the script and cron line for name.

    :return: (script removed, removed cron lines)
    """
    script = script_path(monitor_dir, name)
    existed = os.path.exists(script)
    if existed:
        util.del_file(script)
        LOG.info("Removed monitor script %s", script)
    return existed, remove_cron(name)


def find_artifacts(monitor_dir=MONITOR_DIR):
    """Every generated probe script under monitor_dir."""
    found = []
    if not os.path.isdir(monitor_dir):
        return found
    for fname in sorted(os.listdir(monitor_dir)):
        if not (fname.startswith(SCRIPT_PREFIX) and
                fname.endswith(SCRIPT_SUFFIX)):
            continue
        name = fname[len(SCRIPT_PREFIX):-len(SCRIPT_SUFFIX)]
        script = os.path.join(monitor_dir, fname)
        try:
            args = parse_script(util.load_file(script))
        except (IOError, OSError, ValueError) as e:
            LOG.warning("Unable to read monitor script %s: %s", script, e)
            args = {}
        found.append(MonitorArtifact(name=name, script=script,
                                     mount_path=args.get('mount_path'),
                                     target=args.get('target'),
                                     portal=args.get('portal')))
    return found

# vi: ts=4 expandtab syntax=python
