# This file is part of lunmount. See LICENSE file for copyright and license info.

import os
import shutil
import tempfile
from unittest import TestCase, mock

from lunmount import util


class CiTestCase(TestCase):
    """Common testing class which all lunmount unit tests subclass."""

    def add_patch(self, target, attr, **kwargs):
        """Patches specified target object and sets it as attr on test
        instance also schedules cleanup"""
        if 'autospec' not in kwargs:
            kwargs['autospec'] = True
        m = mock.patch(target, **kwargs)
        p = m.start()
        self.addCleanup(m.stop)
        setattr(self, attr, p)

    def tmp_dir(self, dir=None, cleanup=True):
        """Return a full path to a temporary directory for the test run."""
        if dir is None:
            tmpd = tempfile.mkdtemp(
                prefix="lunmount-ci-%s." % self.__class__.__name__)
        else:
            tmpd = tempfile.mkdtemp(dir=dir)
        self.addCleanup(shutil.rmtree, tmpd)
        return tmpd

    def tmp_path(self, path, _dir=None):
        # return an absolute path to 'path' under dir.
        # if dir is None, one will be created with tmp_dir()
        # the file is not created or modified.
        if _dir is None:
            _dir = self.tmp_dir()

        return os.path.normpath(
            os.path.abspath(os.path.sep.join((_dir, path))))


class FakeMounts(object):
    """A stand in for /proc/mounts.

    Patch util.is_mounted with is_mounted and have mount and umount
    commands update the set of mounted paths.
    """

    def __init__(self, mounted=None):
        self.mounted = set(mounted or [])

    def is_mounted(self, target, mounts_file=None):
        return os.path.normpath(target) in self.mounted

    def mount(self, target, src=None, opts=None):
        self.mounted.add(os.path.normpath(target))

    def umount(self, target, recursive=False):
        self.mounted.discard(os.path.normpath(target))


def proc_error(exit_code=1, stderr='', cmd=None):
    return util.ProcessExecutionError(cmd=cmd or ['false'], stdout='',
                                      stderr=stderr, exit_code=exit_code)

# vi: ts=4 expandtab syntax=python
