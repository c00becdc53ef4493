# This file is part of lunmount. See LICENSE file for copyright and license info.

import os

from lunmount import util
from lunmount.log import logged_call


@logged_call()
def udevadm_settle(exists=None, timeout=None):
    settle_cmd = ["udevadm", "settle"]
    if exists:
        # skip the settle if the requested path already exists
        if os.path.exists(exists):
            return
        settle_cmd.extend(['--exit-if-exists=%s' % exists])
    if timeout:
        settle_cmd.extend(['--timeout=%s' % timeout])

    util.subp(settle_cmd)

# vi: ts=4 expandtab syntax=python
