# This file is part of lunmount. See LICENSE file for copyright and license info.

# This module wraps calls to mkfs.<fstype> for the ext filesystem family,
# the only family lunmount creates.

import os
from uuid import uuid4

from lunmount import util
from lunmount.log import LOG

DEFAULT_FSTYPE = "ext4"

mkfs_commands = {
    "ext2": "mkfs.ext2",
    "ext3": "mkfs.ext3",
    "ext4": "mkfs.ext4",
}


def is_accepted_fstype(fstype):
    """True for filesystems lunmount will adopt without a second warning."""
    return fstype in mkfs_commands


def mkfs(path, fstype=DEFAULT_FSTYPE, uuid=None, force=False):
    """Make an ext filesystem on the block device at path.

       A uuid is generated when none is given so the caller always knows
       the identifier the new filesystem carries; it is returned.

       Force makes mkfs continue even if it finds old data or filesystems
       on the partition.
       """

    if path is None:
        raise ValueError("invalid block dev path '%s'" % path)
    if not os.path.exists(path):
        raise ValueError("'%s': no such file or directory" % path)

    mkfs_cmd = mkfs_commands.get(fstype)
    if not mkfs_cmd:
        raise ValueError("unsupported fs type '%s'" % fstype)

    if util.which(mkfs_cmd) is None:
        raise ValueError("need '%s' but it could not be found" % mkfs_cmd)

    cmd = [mkfs_cmd]
    if force:
        cmd.append("-F")
    if uuid is None:
        uuid = str(uuid4())
    cmd.extend(["-U", uuid, path])

    LOG.info("Creating %s filesystem on %s", fstype, path)
    util.subp(cmd, capture=True)

    return uuid

# vi: ts=4 expandtab syntax=python
