# This file is part of lunmount. See LICENSE file for copyright and license info.

import argparse
import io
import json
from unittest import mock

from lunmount import state, util
from lunmount.commands import main
from .helpers import CiTestCase


class TestMain(CiTestCase):

    def setUp(self):
        super(TestMain, self).setUp()
        self.add_patch('lunmount.commands.main.config.load_system_config',
                       'm_system', return_value={})
        self.add_patch('lunmount.commands.main.log.basicConfig', 'm_basic')
        patcher = mock.patch.dict('os.environ', {}, clear=False)
        patcher.start()
        self.addCleanup(patcher.stop)

    def _run(self, argv):
        with self.assertRaises(SystemExit) as cm:
            with mock.patch('sys.stderr', new_callable=io.StringIO) as err:
                main.main(argv)
        return cm.exception.code, err.getvalue()

    @mock.patch('lunmount.commands.detach.detach')
    def test_user_abort_exits_zero(self, m_detach):
        m_detach.side_effect = util.UserAbort('Aborted by user.')
        code, err = self._run(['detach', '-t', 'iqn.a'])
        self.assertEqual(0, code)
        self.assertIn('Aborted by user.', err)

    @mock.patch('lunmount.commands.detach.detach')
    def test_error_exits_one(self, m_detach):
        m_detach.side_effect = util.PreconditionError('not root')
        code, err = self._run(['detach', '-t', 'iqn.a'])
        self.assertEqual(1, code)
        self.assertIn('not root', err)

    @mock.patch('lunmount.commands.detach.detach')
    def test_set_reaches_command(self, m_detach):
        m_detach.return_value.ok = True
        code, _err = self._run(['--set', 'fstab=/tmp/fstab',
                                '--set', 'target/name=iqn.b', 'detach'])
        self.assertEqual(0, code)
        cfg = m_detach.call_args[0][0]
        self.assertEqual('/tmp/fstab', cfg.fstab)
        self.assertEqual('iqn.b', cfg.target.name)

    def test_invalid_config_exits_one(self):
        code, err = self._run(['--set', 'fstype=xfs', 'status'])
        self.assertEqual(1, code)
        self.assertIn('fstype', err)

    def test_bad_set_exits_one(self):
        code, err = self._run(['--set', 'nokey', 'version'])
        self.assertEqual(1, code)

    def test_only_set_flag_merges_values(self):
        args = argparse.Namespace(main_cfgopts=[
            ('-s', 'fstype=ext3'), ('--set', 'fstab=/tmp/fstab')])
        self.assertEqual({'fstab': '/tmp/fstab'},
                         main.load_args_config(args))

    def test_no_subcommand_prints_help(self):
        with mock.patch('sys.stdout', new_callable=io.StringIO):
            code, _err = self._run([])
        self.assertEqual(1, code)

    def test_version(self):
        with mock.patch('sys.stdout', new_callable=io.StringIO) as out:
            code, _err = self._run(['version'])
        self.assertEqual(0, code)
        self.assertTrue(out.getvalue().strip())

    @mock.patch('lunmount.commands.status.state.discover')
    def test_status_json(self, m_discover):
        m_discover.return_value = state.AttachmentState(
            target='iqn.a', mount_paths=['/mnt/backup'])
        with mock.patch('sys.stdout', new_callable=io.StringIO) as out:
            code, _err = self._run(['status', '-t', 'iqn.a', '--json'])
        self.assertEqual(0, code)
        data = json.loads(out.getvalue())
        self.assertEqual('absent', data['state'])
        self.assertEqual(['/mnt/backup'], data['mount_paths'])

    @mock.patch('lunmount.commands.monitor.probe.run_probe')
    def test_monitor_exit_code_follows_mount(self, m_probe):
        logfile = self.tmp_path('events.log')
        m_probe.return_value.mounted = False
        code, _err = self._run(['monitor', '-t', 'iqn.a', '-p', '10.0.0.1',
                                '-m', '/mnt/backup', '--log', logfile])
        self.assertEqual(1, code)
        self.assertEqual('/etc/fstab', m_probe.call_args[1]['fstab'])
        self.assertEqual(2.0, m_probe.call_args[1]['settle'])

    @mock.patch('lunmount.commands.check_deps.check.report')
    def test_check_deps(self, m_report):
        m_report.return_value = 1
        code, _err = self._run(['check-deps'])
        self.assertEqual(1, code)
        m_report.assert_called_once_with(verbosity=1)

# vi: ts=4 expandtab syntax=python
