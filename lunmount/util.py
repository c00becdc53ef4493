# This file is part of lunmount. See LICENSE file for copyright and license info.

import argparse
import errno
import json
import os
import re
import shutil
import subprocess
import time

from .log import LOG

_USES_SYSTEMD = None

# matcher used in template rendering functions
BASIC_MATCHER = re.compile(r'\$\{([A-Za-z0-9_]+)\}|\$([A-Za-z0-9_]+)')

BACKUP_TIMESTAMP_FMT = '%Y%m%d-%H%M%S'


def subp(args, data=None, rcs=None, capture=False, logstring=False,
         decode="replace", log_captured=False):
    """Run a subprocess.

    :param args: command to run in a list. [cmd, arg1, arg2...]
    :param data: input to the command, made available on its stdin.
    :param rcs:
        a list of allowed return codes.  If subprocess exits with a value not
        in this list, a ProcessExecutionError will be raised.
    :param capture:
        if True, stdout and stderr are captured and returned.
    :param logstring:
        logged instead of the command, and used in place of it in a raised
        ProcessExecutionError.  Set it when args carry a secret.
    :param decode:
        errors mode used to decode captured output, or False to return bytes.
    :param log_captured: log captured stdout and stderr at DEBUG level.

    :return
        if not capturing, return is (None, None)
        if capturing, stdout and stderr are returned.
    """
    if rcs is None:
        rcs = [0]
    args = list(args)

    if logstring:
        LOG.debug("Running hidden command to protect sensitive input: %s",
                  logstring)
    else:
        LOG.debug("Running command %s with allowed return codes %s "
                  "(capture=%s)", args, rcs, capture)
    stdout = stderr = subprocess.PIPE if capture else None
    if data is None:
        stdin = subprocess.DEVNULL
    else:
        stdin = subprocess.PIPE
        if isinstance(data, str):
            data = data.encode('utf-8')
    try:
        sp = subprocess.Popen(args, stdout=stdout, stderr=stderr, stdin=stdin)
        (out, err) = sp.communicate(data)
    except OSError as e:
        raise ProcessExecutionError(cmd=logstring or args, reason=e)

    if capture:
        out = out or b''
        err = err or b''
        if decode:
            out = out.decode('utf-8', errors=decode)
            err = err.decode('utf-8', errors=decode)
        if log_captured:
            LOG.debug("Command returned stdout=%s, stderr=%s", out, err)

    if sp.returncode not in rcs:
        raise ProcessExecutionError(stdout=out, stderr=err,
                                    exit_code=sp.returncode,
                                    cmd=logstring or args)
    return (out, err)


def wait_for(predicate, timeout=5.0, initial=0.25, factor=2.0,
             description=None, sleep=None):
    """Poll predicate until it returns a true value or timeout expires.

    The delay between polls starts at 'initial' seconds and is multiplied
    by 'factor' after each attempt, capped so the total time spent sleeping
    never exceeds 'timeout'.  The predicate is always evaluated once more
    after the final sleep.

    :return: the first true value returned by predicate, or the last false
             value when the timeout is exhausted.
    """
    if description is None:
        description = getattr(predicate, '__name__', repr(predicate))
    if sleep is None:
        sleep = time.sleep
    waited = 0.0
    delay = initial
    attempt = 0
    while True:
        attempt += 1
        result = predicate()
        if result:
            LOG.debug('wait_for %s: satisfied after %s attempt(s), '
                      '%.2fs', description, attempt, waited)
            return result
        remaining = timeout - waited
        if remaining <= 0:
            LOG.debug('wait_for %s: gave up after %s attempt(s), %.2fs',
                      description, attempt, waited)
            return result
        delay = min(delay, remaining)
        sleep(delay)
        waited += delay
        delay *= factor


class PreconditionError(Exception):
    """A required tool or service is missing; raised before any mutation."""


class InputValidationError(ValueError):
    """A required input value is missing or unusable."""


class UserAbort(Exception):
    """The operator declined to continue.  Not a failure."""


class ProcessExecutionError(IOError):

    MESSAGE_TMPL = ('%(description)s\n'
                    'Command: %(cmd)s\n'
                    'Exit code: %(exit_code)s\n'
                    'Reason: %(reason)s\n'
                    'Stdout: %(stdout)s\n'
                    'Stderr: %(stderr)s')
    stdout_indent_level = 8

    def __init__(self, stdout=None, stderr=None,
                 exit_code=None, cmd=None,
                 description=None, reason=None):
        if not cmd:
            self.cmd = '-'
        else:
            self.cmd = cmd

        if not description:
            self.description = 'Unexpected error while running command.'
        else:
            self.description = description

        if not isinstance(exit_code, int):
            self.exit_code = '-'
        else:
            self.exit_code = exit_code

        if not stderr:
            self.stderr = "''"
        else:
            self.stderr = self._indent_text(stderr)

        if not stdout:
            self.stdout = "''"
        else:
            self.stdout = self._indent_text(stdout)

        if reason:
            self.reason = reason
        else:
            self.reason = '-'

        message = self.MESSAGE_TMPL % {
            'description': self.description,
            'cmd': self.cmd,
            'exit_code': self.exit_code,
            'stdout': self.stdout,
            'stderr': self.stderr,
            'reason': self.reason,
        }
        IOError.__init__(self, message)

    def _indent_text(self, text):
        if type(text) == bytes:
            text = text.decode()
        return text.replace('\n', '\n' + ' ' * self.stdout_indent_level)


def _unescape_mount_field(field):
    # /proc/mounts escapes space, tab, newline and backslash as octal
    return re.sub(r'\\([0-7]{3})', lambda m: chr(int(m.group(1), 8)), field)


def get_proc_mounts(mounts_file="/proc/mounts"):
    """
    Returns a list of (device, mountpoint, fstype, options) for each entry
    in /proc/mounts
    """
    mounts = []
    with open(mounts_file, "r") as fp:
        for line in fp:
            toks = line.split()
            if len(toks) < 4:
                continue
            mounts.append((_unescape_mount_field(toks[0]),
                           _unescape_mount_field(toks[1]), toks[2], toks[3]))
    return mounts


def is_mounted(target, mounts_file="/proc/mounts"):
    # return whether or not something is mounted on target
    target = os.path.abspath(target)
    for (_dev, mp, _fstype, _opts) in get_proc_mounts(mounts_file):
        if mp == target:
            return True
    return False


def do_mount(target, src=None, opts=None):
    # mount target, using fstab when src is not given.  return True,
    # or False if something was already mounted on target.
    if opts is None:
        opts = []
    if isinstance(opts, str):
        opts = [opts]

    if is_mounted(target):
        return False

    ensure_dir(target)
    cmd = ['mount'] + opts + ([src, target] if src else [target])
    subp(cmd, capture=True)
    return True


def do_umount(mountpoint, recursive=False):
    # unmount mountpoint. if recursive, unmount all mounts under it.
    # return boolean indicating if mountpoint was previously mounted.
    mp = os.path.abspath(mountpoint)
    ret = False
    for line in reversed(load_file("/proc/mounts").splitlines()):
        curmp = _unescape_mount_field(line.split()[1])
        if curmp == mp or (recursive and curmp.startswith(mp + os.path.sep)):
            subp(['umount', curmp], capture=True)
        if curmp == mp:
            ret = True
    return ret


def ensure_dir(path):
    os.makedirs(path or ".", exist_ok=True)


def write_file(filename, content, mode=0o644):
    """Write content to filename, creating its directory, then chmod it."""
    ensure_dir(os.path.dirname(filename))
    with open(filename, "w") as fp:
        fp.write(content)
    if mode:
        os.chmod(filename, mode)


def load_file(path, decode=True):
    with open(path, "rb") as fp:
        contents = fp.read()
    if decode:
        return contents.decode('utf-8', errors='replace')
    return contents


def del_file(path):
    try:
        os.unlink(path)
        LOG.debug("del_file: removed %s", path)
    except OSError as e:
        if e.errno != errno.ENOENT:
            raise e
        LOG.debug("del_file: %s did not exist.", path)


def backup_file(path, now=None):
    """Copy path to path.backup.<timestamp>, never overwriting a backup.

    Existing backups are history: when the timestamped name is taken a
    numeric suffix is appended instead.

    :return: the path of the new backup, or None if path does not exist.
    """
    if not os.path.exists(path):
        LOG.debug("backup_file: %s does not exist, nothing to back up", path)
        return None
    if now is None:
        now = time.localtime()
    base = "%s.backup.%s" % (path, time.strftime(BACKUP_TIMESTAMP_FMT, now))
    backup = base
    count = 0
    while os.path.exists(backup):
        count += 1
        backup = "%s.%d" % (base, count)
    shutil.copy2(path, backup)
    LOG.info("Backed up %s to %s", path, backup)
    return backup


def is_exe(fpath):
    # Return path of program for execution if found in path
    return os.path.isfile(fpath) and os.access(fpath, os.X_OK)


def which(program, search=None):
    if os.path.sep in program:
        # if program had a '/' in it, then do not search PATH
        if is_exe(program):
            return program

    if search is None:
        search = [p.strip('"') for p in
                  os.environ.get("PATH", "").split(os.pathsep)]

    # normalize path input
    search = [os.path.abspath(p) for p in search]

    for path in search:
        ppath = os.path.sep.join((path, program))
        if is_exe(ppath):
            return ppath

    return None


def is_file_not_found_exc(exc):
    return (isinstance(exc, (IOError, OSError)) and
            hasattr(exc, 'errno') and
            exc.errno in (errno.ENOENT, errno.EIO, errno.ENXIO))


class MergedCmdAppend(argparse.Action):
    """This appends to a list in order of appearence both the option string
       and the value"""
    def __call__(self, parser, namespace, values, option_string=None):
        if getattr(namespace, self.dest, None) is None:
            setattr(namespace, self.dest, [])
        getattr(namespace, self.dest).append((option_string, values,))


def json_dumps(data):
    return json.dumps(data, indent=1, sort_keys=True, separators=(',', ': '))


def render_string(content, params):
    """Replace ${name} and $name in content with str(params[name])."""
    if not params:
        params = {}

    def replacer(match):
        return str(params[match.group(1) or match.group(2)])

    return BASIC_MATCHER.sub(replacer, content)


def uses_systemd():
    """ Check if current enviroment uses systemd by testing if
        /run/systemd/system is a directory; only present if
        systemd is available on running system.
    """

    global _USES_SYSTEMD
    if _USES_SYSTEMD is None:
        _USES_SYSTEMD = os.path.isdir('/run/systemd/system')

    return _USES_SYSTEMD

# vi: ts=4 expandtab syntax=python
