# This file is part of lunmount. See LICENSE file for copyright and license info.

from unittest import mock

from lunmount.udev import udevadm_settle
from .helpers import CiTestCase


class TestUdevadmSettle(CiTestCase):
    def setUp(self):
        super(TestUdevadmSettle, self).setUp()
        self.add_patch('lunmount.util.subp', 'm_subp')

    def test_udevadm_settle(self):
        udevadm_settle()
        self.m_subp.assert_called_with(['udevadm', 'settle'])

    def test_udevadm_settle_exists(self):
        path = self.tmp_path('missing-sdb1')
        udevadm_settle(exists=path)
        self.m_subp.assert_called_with(
            ['udevadm', 'settle', '--exit-if-exists=%s' % path])

    @mock.patch('lunmount.udev.os.path.exists', return_value=True)
    def test_udevadm_settle_skipped_when_path_exists(self, m_exists):
        udevadm_settle(exists='/dev/sdb1')
        self.m_subp.assert_not_called()

    def test_udevadm_settle_timeout(self):
        udevadm_settle(timeout=10)
        self.m_subp.assert_called_with(
            ['udevadm', 'settle', '--timeout=10'])

# vi: ts=4 expandtab syntax=python
