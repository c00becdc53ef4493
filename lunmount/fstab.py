# This file is part of lunmount. See LICENSE file for copyright and license info.

"""Persistent mount registration in /etc/fstab.

There is at most one fstab line per mount path.  Registering a path
removes every earlier line for it before appending the new one, and every
edit is preceded by a timestamped backup of the file.
"""

from collections import namedtuple
import os

from lunmount import block, systemd, util
from lunmount.log import LOG

FstabData = namedtuple(
    "FstabData", ('spec', 'path', 'fstype', 'options', 'freq', 'passno'))
FstabData.__new__.__defaults__ = (None, None, None, "defaults", "0", "0")

BASE_OPTIONS = ['defaults', 'nofail']
DEVICE_TIMEOUT = 30
LEGACY_UNIT_PREFIX = 'mnt-datastore-'


class MountVerificationError(RuntimeError):
    """The mount did not come up after fstab was already changed."""

    def __init__(self, message, fstab_dump=None, mount_status=None):
        self.fstab_dump = fstab_dump
        self.mount_status = mount_status
        details = [message]
        if fstab_dump is not None:
            details.append("Current fstab:\n%s" % fstab_dump)
        if mount_status is not None:
            details.append("Mount status:\n%s" % mount_status)
        super(MountVerificationError, self).__init__('\n'.join(details))


def mount_options(device_timeout=DEVICE_TIMEOUT, extra=None):
    """options for a network disk that must never hang the boot"""
    opts = list(BASE_OPTIONS)
    if device_timeout:
        opts.append('x-systemd.device-timeout=%s' % device_timeout)
    for opt in (extra or []):
        if opt not in opts:
            opts.append(opt)
    return ','.join(opts)


def normalize_path(path):
    return os.path.normpath(os.path.abspath(path))


def _escape(field):
    return (field.replace('\\', '\\134').replace(' ', '\\040')
            .replace('\t', '\\011').replace('\n', '\\012'))


def _unescape(field):
    for code, char in (('\\040', ' '), ('\\011', '\t'), ('\\012', '\n'),
                       ('\\134', '\\')):
        field = field.replace(code, char)
    return field


def fstab_line_for_data(fdata):
    """Return a string representing fdata in /etc/fstab format.

    :param fdata: a FstabData type
    :return a newline terminated string for /etc/fstab."""
    if not fdata.spec:
        raise ValueError("empty spec in %s." % str(fdata))
    if not fdata.path:
        raise ValueError("empty path in %s." % str(fdata))
    options = fdata.options if fdata.options else "defaults"
    return ' '.join((fdata.spec, _escape(fdata.path), fdata.fstype, options,
                     str(fdata.freq), str(fdata.passno))) + "\n"


def parse_line(line):
    """FstabData for an fstab line, or None for comments and blank lines"""
    stripped = line.strip()
    if not stripped or stripped.startswith('#'):
        return None
    toks = stripped.split()
    if len(toks) < 2:
        return None
    toks = toks + [None] * (6 - len(toks))
    return FstabData(toks[0], _unescape(toks[1]), toks[2], toks[3],
                     toks[4] or "0", toks[5] or "0")


def load_entries(fstab):
    if not os.path.exists(fstab):
        return []
    return [e for e in map(parse_line,
                           util.load_file(fstab).splitlines()) if e]


def entries_for_path(fstab, path):
    path = normalize_path(path)
    return [e for e in load_entries(fstab)
            if e.path and e.path.startswith('/') and
            normalize_path(e.path) == path]


def _filter_lines(content, paths):
    kept = []
    removed = []
    for line in content.splitlines(True):
        entry = parse_line(line)
        if (entry and entry.path.startswith('/') and
                normalize_path(entry.path) in paths):
            removed.append(line.rstrip('\n'))
        else:
            kept.append(line)
    return ''.join(kept), removed


def remove_entries(fstab, paths):
    """Remove every line mounting any of paths, backing fstab up first.

    The file is left untouched, and no backup is made, when nothing
    matches.

    :return: the removed lines.
    """
    if isinstance(paths, str):
        paths = [paths]
    paths = set(normalize_path(p) for p in paths)
    if not os.path.exists(fstab):
        return []
    content, removed = _filter_lines(util.load_file(fstab), paths)
    if removed:
        util.backup_file(fstab)
        util.write_file(fstab, content, mode=None)
        for line in removed:
            LOG.info("Removed from %s: %s", fstab, line)
    return removed


def add_entry(fstab, fdata):
    """Replace any lines for fdata.path with a single line for fdata."""
    path = normalize_path(fdata.path)
    content = util.load_file(fstab) if os.path.exists(fstab) else ''
    util.backup_file(fstab)
    content, removed = _filter_lines(content, set([path]))
    for line in removed:
        LOG.info("Replacing %s entry: %s", fstab, line)
    if content and not content.endswith('\n'):
        content += '\n'
    line = fstab_line_for_data(fdata)
    util.write_file(fstab, content + line, mode=None)
    LOG.info("Added to %s: %s", fstab, line.rstrip('\n'))
    return line


def unit_names(mount_path):
    """Every unit name that may have been created for mount_path.

    This is the systemd-escaped .mount/.automount pair plus the legacy
    mnt-datastore-<name> naming of older installs.
    """
    name = os.path.basename(normalize_path(mount_path))
    names = [systemd.escape_path(mount_path, 'mount'),
             systemd.escape_path(mount_path, 'automount')]
    for suffix in ('mount', 'automount'):
        legacy = '%s%s.%s' % (LEGACY_UNIT_PREFIX, name, suffix)
        if legacy not in names:
            names.append(legacy)
    return names


def cleanup_units(unit_dir, mount_path):
    """Remove persistence units for mount_path that could race fstab."""
    removed = [u for u in unit_names(mount_path)
               if systemd.remove_unit(unit_dir, u)]
    if removed:
        systemd.daemon_reload()
    return removed


def fstab_dump(fstab, path=None):
    if not os.path.exists(fstab):
        return "%s does not exist" % fstab
    if path is None:
        return util.load_file(fstab)
    entries = entries_for_path(fstab, path)
    if not entries:
        return "No fstab entry found for %s" % path
    return ''.join(fstab_line_for_data(e) for e in entries)


def mount_status(mount_path):
    if util.is_mounted(mount_path):
        return block.get_fs_use_info(mount_path) or \
            "%s is mounted" % mount_path
    return "%s is not mounted" % mount_path


def activate(mount_path, fstab):
    """Mount mount_path from fstab and check that it is really mounted."""
    opts = [] if fstab == '/etc/fstab' else ['--fstab', fstab]
    try:
        util.do_mount(mount_path, opts=opts)
    except util.ProcessExecutionError as e:
        LOG.error("mount %s failed: %s", mount_path, e.stderr)
    if not util.is_mounted(mount_path):
        raise MountVerificationError(
            "Mount failed for %s" % mount_path,
            fstab_dump=fstab_dump(fstab), mount_status=mount_status(
                mount_path))
    LOG.info("Mount successful: %s", mount_path)


def register(uuid, mount_path, fstype, fstab='/etc/fstab',
             unit_dir='/etc/systemd/system', options=None, passno="2"):
    """Bind filesystem uuid to mount_path in fstab and mount it now.

    Safe to repeat: the result is always one fstab line, one active mount
    and no leftover mount units for mount_path.
    """
    if not uuid:
        raise ValueError("A filesystem UUID is required to register %s" %
                         mount_path)
    mount_path = normalize_path(mount_path)
    if options is None:
        options = mount_options()

    removed = cleanup_units(unit_dir, mount_path)
    if removed:
        LOG.info("Removed stale units for %s: %s", mount_path,
                 ', '.join(removed))

    if util.is_mounted(mount_path):
        LOG.info("Unmounting existing mount at %s", mount_path)
        try:
            util.do_umount(mount_path)
        except util.ProcessExecutionError as e:
            LOG.warning("umount %s failed: %s", mount_path, e.stderr)

    util.ensure_dir(mount_path)

    fdata = FstabData(spec="UUID=%s" % uuid, path=mount_path, fstype=fstype,
                      options=options, freq="0", passno=passno)
    add_entry(fstab, fdata)
    # let the fstab generator see the new line before mounting
    systemd.daemon_reload()
    activate(mount_path, fstab)
    return fdata

# vi: ts=4 expandtab syntax=python
