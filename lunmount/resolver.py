# This file is part of lunmount. See LICENSE file for copyright and license info.

# Map an established iSCSI session to the local block device it produced.

from lunmount import block, util
from lunmount.block import iscsi
from lunmount.log import LOG, logged_time
from lunmount.udev import udevadm_settle


class DeviceNotFoundError(RuntimeError):
    pass


class AmbiguousDeviceError(DeviceNotFoundError):
    pass


def _attached(target, portal):
    return [d for s in iscsi.get_sessions(target)
            if portal is None or iscsi.same_portal(s.portal, portal)
            for d in s.disks]


def _describe(disks):
    if not disks:
        return '  (none)'
    return '\n'.join('  %s lun=%s state=%s' % (d.path, d.lun, d.state)
                     for d in disks)


def _select(running, lun):
    if lun is not None:
        matches = [d for d in running if d.lun == lun]
        return matches[0] if matches else None
    if len(running) > 1:
        raise AmbiguousDeviceError(
            "More than one running device is attached, select one with "
            "--lun:\n%s" % _describe(running))
    return running[0] if running else None


@logged_time("RESOLVE_DEVICE")
def resolve_device(target, portal=None, lun=None, settle=5):
    """Return the /dev path of the running disk attached for target.

    When nothing is running yet, one rescan of the session is requested and
    the attached devices are polled again for up to 'settle' seconds.  There
    is exactly one rescan; the poll is bounded by 'settle'.

    :param lun: pick the disk with this LUN number.  Without it more than one
                running disk is an error rather than a guess.
    :raises DeviceNotFoundError: no running disk, or the resolved path is
                                 not a block device.
    """
    disks = _attached(target, portal)
    LOG.debug("Attached devices for %s (initial scan):\n%s", target,
              _describe(disks))
    chosen = _select([d for d in disks if d.running], lun)

    if chosen is None:
        LOG.info("No running device attached for %s, triggering a one-time "
                 "rescan", target)
        iscsi.iscsiadm_rescan()

        def running_after_rescan():
            return [d for d in _attached(target, portal) if d.running]

        util.wait_for(running_after_rescan, timeout=settle,
                      description='running iSCSI device for %s' % target)
        disks = _attached(target, portal)
        LOG.debug("Attached devices for %s after rescan:\n%s", target,
                  _describe(disks))
        chosen = _select([d for d in disks if d.running], lun)

    if chosen is None:
        raise DeviceNotFoundError(
            "No operational device detected for %s. Attached devices:\n%s"
            % (target, _describe(disks)))

    udevadm_settle(exists=chosen.path)
    if not block.is_block_device(chosen.path):
        raise DeviceNotFoundError(
            "Device %s does not exist or is not a block device" %
            chosen.path)

    LOG.info("Detected iSCSI device %s (lun %s)", chosen.path, chosen.lun)
    return chosen.path

# vi: ts=4 expandtab syntax=python
