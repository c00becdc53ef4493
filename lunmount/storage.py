# This file is part of lunmount. See LICENSE file for copyright and license info.

"""Decide what to do with whatever is already on the attached disk.

Nothing destructive happens unless existing data was detected and the
operator explicitly agreed to destroy it.  A disk with no partitions and no
filesystem is partitioned and formatted without any question being asked.
"""

import os
import typing

import attr

from lunmount import block, util
from lunmount.block import mkfs, ptable
from lunmount.log import LOG
from lunmount.udev import udevadm_settle

DESTROY_PARTITIONS_Q = ("Continue and create new partition table? "
                        "This will destroy existing data!")
DESTROY_FILESYSTEM_Q = ("Continue and format partition? "
                        "This will destroy existing filesystem!")
UNKNOWN_FSTYPE_Q = ("Existing filesystem is %s, not %s. This may cause "
                    "issues. Continue anyway?")


class StorageError(RuntimeError):
    pass


@attr.s(auto_attribs=True)
class PreparedStorage:
    device: str
    partition: str
    fstype: str
    uuid: str
    partitioned: bool = False
    formatted: bool = False
    previous_uuid: typing.Optional[str] = None


def _release(device, mount_path):
    """Unmount anything on device that lives at mount_path.

    Any other active mount means the disk is in use elsewhere and must not
    be destroyed.
    """
    wanted = os.path.abspath(mount_path) if mount_path else None
    for info in block._lsblock([device]):
        if not info.mountpoint:
            continue
        if info.mountpoint != wanted:
            raise StorageError(
                "%s is mounted at %s, refusing to destroy it" %
                (info.path, info.mountpoint))
        LOG.info("Unmounting %s from %s before repartitioning", info.path,
                 info.mountpoint)
        util.do_umount(info.mountpoint)


def prepare_partition(device, confirmer, mount_path=None, settle=3):
    """Return (partition path, created) for device.

    Existing partitions are kept unless the operator confirms their
    destruction, in which case the first listed one is adopted.
    """
    existing = block.get_partitions(device)
    whole_disk = None
    if existing:
        confirmer.show("Warning: Device %s already has partitions:\n%s" %
                       (device, block.lsblk_text(device)))
        prior = 'partitions'
    else:
        whole_disk = block.blkid_probe(device)
        prior = 'filesystem' if whole_disk.fstype else None
        if prior:
            confirmer.show("Warning: Device %s has no partition table but "
                           "holds a %s filesystem (UUID=%s)" %
                           (device, whole_disk.fstype, whole_disk.uuid))

    if prior and not confirmer.confirm(DESTROY_PARTITIONS_Q):
        if existing:
            partition = existing[0].path
            LOG.info("Skipping partitioning - using existing partition %s",
                     partition)
        else:
            partition = device
            LOG.info("Skipping partitioning - using whole-disk filesystem "
                     "on %s", device)
        if not block.is_block_device(partition):
            raise StorageError("Existing partition %s does not exist." %
                               partition)
        return partition, False

    if prior:
        _release(device, mount_path)
        for info in existing:
            ptable.wipe_signatures(info.path)
        ptable.wipe_signatures(device)

    partition, present = ptable.create_single_partition(device,
                                                        settle=settle)
    if not present:
        raise StorageError("Partition %s was not created successfully." %
                           partition)
    LOG.info("New partition created: %s", partition)
    return partition, True


def prepare_filesystem(partition, confirmer, fstype=mkfs.DEFAULT_FSTYPE):
    """Return (fstype, formatted, previous uuid) for partition.

    raises util.UserAbort when an unrecognized filesystem is kept and the
    operator does not want to continue with it.
    """
    found = block.blkid_probe(partition)
    if not found.fstype:
        mkfs.mkfs(partition, fstype, force=True)
        return fstype, True, None

    confirmer.show("Warning: Partition %s already has a filesystem (%s), "
                   "UUID=%s LABEL=%s" % (partition, found.fstype, found.uuid,
                                         found.label or ''))
    if confirmer.confirm(DESTROY_FILESYSTEM_Q):
        mkfs.mkfs(partition, fstype, force=True)
        return fstype, True, found.uuid

    LOG.info("Skipping formatting - using existing %s filesystem on %s",
             found.fstype, partition)
    if not mkfs.is_accepted_fstype(found.fstype):
        if not confirmer.confirm(UNKNOWN_FSTYPE_Q % (found.fstype, fstype)):
            raise util.UserAbort("Aborted by user.")
    return found.fstype, False, found.uuid


def prepare(device, confirmer, mount_path=None, fstype=mkfs.DEFAULT_FSTYPE,
            settle=3):
    """Run the partition stage then the filesystem stage on device."""
    partition, partitioned = prepare_partition(
        device, confirmer, mount_path=mount_path, settle=settle)
    fstype, formatted, previous = prepare_filesystem(
        partition, confirmer, fstype=fstype)

    if formatted:
        udevadm_settle()
    uuid = block.get_volume_uuid(partition)
    if not uuid:
        raise StorageError("Cannot determine UUID for partition %s" %
                           partition)
    LOG.info("Partition %s has %s filesystem UUID=%s", partition, fstype,
             uuid)
    return PreparedStorage(device=device, partition=partition, fstype=fstype,
                           uuid=uuid, partitioned=partitioned,
                           formatted=formatted, previous_uuid=previous)

# vi: ts=4 expandtab syntax=python
