# This file is part of lunmount. See LICENSE file for copyright and license info.

import os
import time
from unittest import mock

from lunmount import util
from .helpers import CiTestCase


class TestWhich(CiTestCase):

    def setUp(self):
        super(TestWhich, self).setUp()
        self.exe_list = []
        self.add_patch('lunmount.util.is_exe', 'm_is_exe',
                       side_effect=self.my_is_exe)
        self.orig_path = os.environ.get("PATH")
        os.environ["PATH"] = "/usr/bin:/usr/sbin:/bin:/sbin"

    def tearDown(self):
        if self.orig_path is None:
            del os.environ["PATH"]
        else:
            os.environ["PATH"] = self.orig_path

    def my_is_exe(self, fpath):
        return os.path.abspath(fpath) in self.exe_list

    def test_found_in_path(self):
        self.exe_list = ["/usr/sbin/iscsiadm"]
        self.assertEqual(util.which("iscsiadm"), "/usr/sbin/iscsiadm")

    def test_no_program(self):
        self.assertIsNone(util.which("fuzz"))

    def test_custom_path(self):
        self.exe_list = ["/usr/bin2/fuzz"]
        self.assertEqual(
            util.which("fuzz", search=["/bin1", "/usr/bin2"]),
            "/usr/bin2/fuzz")


class TestSubp(CiTestCase):

    stdin2err = ['bash', '-c', 'cat >&2']
    stdin2out = ['cat']
    exit_with_value = ['bash', '-c', 'exit ${1:-0}', 'test_subp_exit_val']

    def test_subp_exit_nonzero_raises(self):
        exc = None
        try:
            util.subp(self.exit_with_value + ['24'])
        except util.ProcessExecutionError as e:
            exc = e
        self.assertIsNotNone(exc)
        self.assertEqual(24, exc.exit_code)

    def test_rcs_other_than_zero_work(self):
        _out, _err = util.subp(self.exit_with_value + ['24'], rcs=[24])

    def test_rcs_not_in_list_raise(self):
        with self.assertRaises(util.ProcessExecutionError):
            util.subp(self.exit_with_value + ['3'], rcs=[0, 15])

    def test_returns_none_if_no_capture(self):
        (out, err) = util.subp(self.stdin2out, data=b'')
        self.assertIsNone(err)
        self.assertIsNone(out)

    def test_str_data_is_encoded(self):
        (out, _err) = util.subp(self.stdin2out, data='hello', capture=True)
        self.assertEqual('hello', out)

    def test_subp_capture_stderr(self):
        data = b'hello world'
        (out, err) = util.subp(self.stdin2err, capture=True, data=data)
        self.assertEqual(err, data.decode())
        self.assertEqual(out, '')

    def test_logstring_replaces_command_in_error(self):
        secret = 'chap-s3cret'
        with self.assertRaises(util.ProcessExecutionError) as cm:
            util.subp(['bash', '-c', 'exit 1', secret],
                      logstring='update --value=HIDDEN')
        self.assertNotIn(secret, str(cm.exception))
        self.assertIn('HIDDEN', str(cm.exception))

    def test_missing_program_raises(self):
        with self.assertRaises(util.ProcessExecutionError) as cm:
            util.subp(['lunmount-no-such-program', 's3cret'],
                      logstring='no-such-program HIDDEN')
        self.assertNotIn('s3cret', str(cm.exception))

    def test_decode_false_returns_bytes(self):
        (out, _err) = util.subp(self.stdin2out, data=b'abc', capture=True,
                                decode=False)
        self.assertEqual(b'abc', out)


class TestWaitFor(CiTestCase):

    def test_returns_first_true_value_without_sleeping(self):
        sleep = mock.Mock()
        self.assertEqual('/dev/sdb',
                         util.wait_for(lambda: '/dev/sdb', sleep=sleep))
        sleep.assert_not_called()

    def test_backoff_is_exponential_and_bounded(self):
        sleep = mock.Mock()
        result = util.wait_for(lambda: None, timeout=2.0, initial=0.25,
                               factor=2.0, sleep=sleep)
        self.assertIsNone(result)
        delays = [c[0][0] for c in sleep.call_args_list]
        self.assertEqual([0.25, 0.5, 1.0, 0.25], delays)
        self.assertAlmostEqual(2.0, sum(delays))

    def test_predicate_checked_after_last_sleep(self):
        answers = [[], [], ['sdb']]
        sleep = mock.Mock()
        self.assertEqual(['sdb'], util.wait_for(lambda: answers.pop(0),
                                                timeout=1.0, sleep=sleep))
        self.assertEqual(2, sleep.call_count)

    def test_zero_timeout_checks_once(self):
        pred = mock.Mock(return_value=False)
        sleep = mock.Mock()
        self.assertFalse(util.wait_for(pred, timeout=0, sleep=sleep))
        pred.assert_called_once_with()
        sleep.assert_not_called()


class TestProcMounts(CiTestCase):

    def setUp(self):
        super(TestProcMounts, self).setUp()
        self.mounts = self.tmp_path('mounts')
        util.write_file(self.mounts, "\n".join([
            "/dev/sda1 / ext4 rw,relatime 0 0",
            "/dev/sdb1 /mnt/backup ext4 rw,relatime 0 0",
            "/dev/sdc1 /mnt/my\\040data ext4 rw 0 0",
        ]) + "\n")

    def test_get_proc_mounts_unescapes(self):
        mounts = util.get_proc_mounts(self.mounts)
        self.assertEqual(('/dev/sdc1', '/mnt/my data', 'ext4', 'rw'),
                         mounts[2])

    def test_is_mounted(self):
        self.assertTrue(util.is_mounted('/mnt/backup', self.mounts))
        self.assertTrue(util.is_mounted('/mnt/backup/', self.mounts))
        self.assertTrue(util.is_mounted('/mnt/my data', self.mounts))
        self.assertFalse(util.is_mounted('/mnt/back', self.mounts))


class TestDoMount(CiTestCase):

    def setUp(self):
        super(TestDoMount, self).setUp()
        self.add_patch('lunmount.util.subp', 'm_subp')
        self.add_patch('lunmount.util.is_mounted', 'm_is_mounted')
        self.add_patch('lunmount.util.ensure_dir', 'm_ensure_dir')

    def test_mount_from_fstab(self):
        self.m_is_mounted.return_value = False
        self.assertTrue(util.do_mount('/mnt/backup'))
        self.m_subp.assert_called_with(['mount', '/mnt/backup'],
                                       capture=True)

    def test_mount_with_alternate_fstab(self):
        self.m_is_mounted.return_value = False
        util.do_mount('/mnt/backup', opts=['--fstab', '/tmp/fstab'])
        self.m_subp.assert_called_with(
            ['mount', '--fstab', '/tmp/fstab', '/mnt/backup'], capture=True)

    def test_already_mounted_is_noop(self):
        self.m_is_mounted.return_value = True
        self.assertFalse(util.do_mount('/mnt/backup', src='/dev/sdb1'))
        self.m_subp.assert_not_called()


class TestDoUmount(CiTestCase):

    @mock.patch('lunmount.util.subp')
    @mock.patch('lunmount.util.load_file')
    def test_umount_only_exact_path(self, m_load, m_subp):
        m_load.return_value = "\n".join([
            "/dev/sdb1 /mnt/backup ext4 rw 0 0",
            "/dev/sdc1 /mnt/backup2 ext4 rw 0 0",
        ])
        self.assertTrue(util.do_umount('/mnt/backup'))
        m_subp.assert_called_once_with(['umount', '/mnt/backup'],
                                       capture=True)

    @mock.patch('lunmount.util.subp')
    @mock.patch('lunmount.util.load_file')
    def test_umount_recursive_innermost_first(self, m_load, m_subp):
        m_load.return_value = "\n".join([
            "/dev/sdb1 /mnt/backup ext4 rw 0 0",
            "tmpfs /mnt/backup/tmp tmpfs rw 0 0",
        ])
        util.do_umount('/mnt/backup', recursive=True)
        self.assertEqual([mock.call(['umount', '/mnt/backup/tmp'],
                                    capture=True),
                          mock.call(['umount', '/mnt/backup'], capture=True)],
                         m_subp.call_args_list)

    @mock.patch('lunmount.util.subp')
    @mock.patch('lunmount.util.load_file')
    def test_not_mounted(self, m_load, m_subp):
        m_load.return_value = "/dev/sda1 / ext4 rw 0 0\n"
        self.assertFalse(util.do_umount('/mnt/backup'))
        m_subp.assert_not_called()


class TestBackupFile(CiTestCase):

    def setUp(self):
        super(TestBackupFile, self).setUp()
        self.fstab = self.tmp_path('fstab')
        self.now = time.strptime('2026-01-02 03:04:05', '%Y-%m-%d %H:%M:%S')

    def test_missing_file_is_not_backed_up(self):
        self.assertIsNone(util.backup_file(self.fstab, now=self.now))

    def test_backup_name_is_timestamped(self):
        util.write_file(self.fstab, "# fstab\n")
        backup = util.backup_file(self.fstab, now=self.now)
        self.assertEqual(self.fstab + '.backup.20260102-030405', backup)
        self.assertEqual("# fstab\n", util.load_file(backup))

    def test_existing_backup_is_never_overwritten(self):
        util.write_file(self.fstab, "first\n")
        first = util.backup_file(self.fstab, now=self.now)
        util.write_file(self.fstab, "second\n")
        second = util.backup_file(self.fstab, now=self.now)
        self.assertNotEqual(first, second)
        self.assertEqual("first\n", util.load_file(first))
        self.assertEqual("second\n", util.load_file(second))
        self.assertEqual(first + '.1', second)


class TestLoadFile(CiTestCase):

    def test_load_file_handles_utf8(self):
        fname = self.tmp_path('utf8')
        with open(fname, 'wb') as fp:
            fp.write(b'start \xc3\xa9 end')
        self.assertEqual('start \xe9 end', util.load_file(fname))

    def test_load_file_respects_decode_false(self):
        fname = self.tmp_path('raw')
        with open(fname, 'wb') as fp:
            fp.write(b'abc')
        self.assertEqual(b'abc', util.load_file(fname, decode=False))


class TestDelFile(CiTestCase):

    def test_del_missing_file_is_fine(self):
        util.del_file(self.tmp_path('missing'))

    def test_del_file(self):
        fname = self.tmp_path('file')
        util.write_file(fname, 'x')
        util.del_file(fname)
        self.assertFalse(os.path.exists(fname))


class TestRenderString(CiTestCase):

    def test_render_both_forms(self):
        self.assertEqual(
            'exec lunmount --target iqn.test:disk1 --log /var/log/x',
            util.render_string('exec lunmount --target ${name} --log $log',
                               {'name': 'iqn.test:disk1',
                                'log': '/var/log/x'}))

    def test_missing_param_raises(self):
        with self.assertRaises(KeyError):
            util.render_string('${name}', {})

# vi: ts=4 expandtab syntax=python
