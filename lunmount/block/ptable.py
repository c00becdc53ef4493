# This file is part of lunmount. See LICENSE file for copyright and license info.

# Partition table creation.  lunmount only ever writes one layout: a GPT
# label holding a single partition that spans the disk, which keeps LUNs
# larger than the 2TiB msdos limit usable.

from lunmount import block, util
from lunmount.log import LOG, logged_time
from lunmount.udev import udevadm_settle

PTABLE_TYPE = "gpt"
PARTITION_NUMBER = 1


def partition_path(device, number=PARTITION_NUMBER):
    """path the kernel gives partition 'number' of device"""
    return block.dev_path(
        block.partition_kname(block.path_to_kname(device), number))


def wipe_signatures(path):
    """erase filesystem and partition table signatures from path"""
    LOG.info("Wiping signatures on %s", path)
    util.subp(['wipefs', '--all', '--force', path], capture=True)


def reread_partition_table(device):
    try:
        util.subp(['partprobe', device], capture=True)
    except util.ProcessExecutionError as e:
        # the kernel may still pick the table up through udev
        LOG.warning("partprobe %s failed: %s", device, e.stderr)


@logged_time("PARTITION_DISK")
def create_single_partition(device, settle=3):
    """Label device with a fresh GPT table and one whole-disk partition.

    Waits up to 'settle' seconds for the kernel to expose the partition.

    :return: the partition path and whether it appeared in time.
    """
    part = partition_path(device)
    LOG.info("Creating %s partition table on %s", PTABLE_TYPE, device)
    util.subp(['parted', device, '--script', '--',
               'mklabel', PTABLE_TYPE,
               'mkpart', 'primary', '0%', '100%'], capture=True)
    reread_partition_table(device)
    udevadm_settle(exists=part)
    present = util.wait_for(lambda: block.is_block_device(part),
                            timeout=settle,
                            description='partition %s' % part)
    return part, bool(present)

# vi: ts=4 expandtab syntax=python
