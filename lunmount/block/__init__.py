# This file is part of lunmount. See LICENSE file for copyright and license info.

# Helpers for inspecting block devices.  All lsblk and blkid output is
# translated into typed records here, so callers never match on the raw
# text of either tool.

import os
import re
import shlex
import stat
import typing

import attr

from lunmount import util
from lunmount.log import LOG

LSBLK_KEYS = ['KNAME', 'NAME', 'PKNAME', 'TYPE', 'FSTYPE', 'UUID', 'SIZE',
              'MOUNTPOINT']

# blkid exits 2 when no signature could be identified
BLKID_RC_NOTFOUND = 2


@attr.s(auto_attribs=True, frozen=True)
class BlockInfo:
    kname: str
    path: str
    type: str
    parent: typing.Optional[str] = None
    fstype: typing.Optional[str] = None
    uuid: typing.Optional[str] = None
    size: typing.Optional[int] = None
    mountpoint: typing.Optional[str] = None


@attr.s(auto_attribs=True, frozen=True)
class Signature:
    """What blkid found on a device.  fstype None means no signature."""
    fstype: typing.Optional[str] = None
    uuid: typing.Optional[str] = None
    usage: typing.Optional[str] = None
    label: typing.Optional[str] = None
    pttype: typing.Optional[str] = None


def get_dev_name_entry(devname):
    """
    convert device name to path in /dev
    """
    bname = devname.split('/dev/')[-1]
    return (bname, "/dev/" + bname)


def is_block_device(path):
    """
    check if path is a block device
    """
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError as e:
        if not util.is_file_not_found_exc(e):
            raise
    return False


def dev_path(devname):
    """
    convert device name to path in /dev
    """
    if devname.startswith('/dev/'):
        return devname
    else:
        return '/dev/' + devname


def path_to_kname(path):
    """
    converts a path in /dev or a path in /sys/block to the device kname
    """
    # if path given is a link, get real path
    if os.path.sep in path:
        path = os.path.realpath(path)
    return os.path.basename(path)


def partition_kname(disk_kname, partition_number):
    """
    Add number to disk_kname prepending a 'p' if needed
    """
    for dev_type in ['nvme', 'mmcblk', 'cciss', 'mpath', 'dm', 'md', 'loop']:
        if disk_kname.startswith(dev_type):
            partition_number = "p%s" % partition_number
            break
    return "%s%s" % (disk_kname, partition_number)


def sys_block_path(devname, add=None, strict=True):
    """
    get path to device in /sys/class/block
    """
    toks = ['/sys/class/block', path_to_kname(devname)]
    if add is not None:
        toks.append(add)
    path = os.sep.join(toks)

    if strict and not os.path.exists(path):
        err = OSError(
            "devname '{}' did not have existing syspath '{}'".format(
                devname, path))
        err.errno = 2
        raise err

    return os.path.normpath(path)


def _lsblk_unescape(value):
    # lsblk --pairs writes unsafe characters such as space as \xHH
    return re.sub(r'\\x([0-9a-fA-F]{2})',
                  lambda m: chr(int(m.group(1), 16)), value)


def _lsblock_pairs_to_list(lines):
    """
    parse lsblk --pairs output into BlockInfo records, keeping lsblk order
    """
    ret = []
    for line in lines.splitlines():
        toks = shlex.split(line)
        if not toks:
            continue
        cur = {}
        for tok in toks:
            k, v = tok.split("=", 1)
            cur[k] = _lsblk_unescape(v)
        size = cur.get('SIZE')
        # use KNAME, as NAME may include spaces and other info,
        # for example, lvm decices may show 'dm0 lvm1'
        ret.append(BlockInfo(
            kname=cur['KNAME'],
            path=get_dev_name_entry(cur['KNAME'])[1],
            type=cur.get('TYPE', ''),
            parent=cur.get('PKNAME') or None,
            fstype=cur.get('FSTYPE') or None,
            uuid=cur.get('UUID') or None,
            size=int(size) if size and size.isdigit() else None,
            mountpoint=cur.get('MOUNTPOINT') or None))
    return ret


def _lsblock(args=None):
    """
    get lsblk data as a list of BlockInfo
    """
    if args is None:
        args = []
    basecmd = ['lsblk', '--noheadings', '--bytes', '--pairs',
               '--output=' + ','.join(LSBLK_KEYS)]
    (out, _err) = util.subp(basecmd + list(args), capture=True)
    return _lsblock_pairs_to_list(out)


def get_partitions(device):
    """
    return the child partitions of device in the order lsblk lists them
    """
    kname = path_to_kname(device)
    return [info for info in _lsblock([device])
            if info.kname != kname and info.type == 'part']


def get_mountpoints(device):
    """
    return the active mountpoints of device and everything below it
    """
    return [i.mountpoint for i in _lsblock([device]) if i.mountpoint]


def lsblk_text(device):
    """human readable lsblk listing of device, for showing an operator"""
    out, _err = util.subp(['lsblk', device], capture=True)
    return out


def blkid_probe(path):
    """
    probe path for a filesystem or partition table signature

    bypasses the blkid cache so a freshly written filesystem is seen.
    """
    out, _err = util.subp(['blkid', '--probe', '--output', 'export', path],
                          rcs=[0, BLKID_RC_NOTFOUND], capture=True)
    data = {}
    for line in out.splitlines():
        if '=' not in line:
            continue
        key, value = line.split('=', 1)
        data[key] = value
    return Signature(fstype=data.get('TYPE') or None,
                     uuid=data.get('UUID') or None,
                     usage=data.get('USAGE') or None,
                     label=data.get('LABEL') or None,
                     pttype=data.get('PTTYPE') or None)


def get_volume_uuid(path):
    """
    Get uuid of the filesystem on path. This address uniquely identifies
    the device and remains consistant across reboots
    """
    return blkid_probe(path).uuid or ''


def get_fs_use_info(path):
    """return 'df -h' output for path, or None if df fails"""
    try:
        out, _err = util.subp(['df', '-h', path], capture=True)
    except util.ProcessExecutionError as e:
        LOG.debug('df failed for %s: %s', path, e.stderr)
        return None
    return out


def delete_scsi_device(devname):
    """
    ask the kernel to drop a SCSI disk by writing to its sysfs delete node

    returns True if the device was present and the request was written.
    """
    try:
        delete_path = sys_block_path(devname, add='device/delete')
    except OSError:
        LOG.debug('No sysfs delete node for %s, already gone', devname)
        return False
    LOG.info('Removing stale SCSI device %s', devname)
    util.write_file(delete_path, "1", mode=None)
    return True

# vi: ts=4 expandtab syntax=python
