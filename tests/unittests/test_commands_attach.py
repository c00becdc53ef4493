# This file is part of lunmount. See LICENSE file for copyright and license info.

import io
from unittest import mock

from lunmount import config, fstab, monitor, prompt, state, storage, util
from lunmount.block import iscsi
from lunmount.commands import attach
from .helpers import CiTestCase

TARGET = 'iqn.2000-01.com.example:storage.lun1'
UUID = 'fb26cc6c-ae73-11e5-9e38-2fb63f0c3155'


def _cfg(**target):
    cfg = config.from_cfg({}, environ={})
    for key, value in target.items():
        setattr(cfg.target, key, value)
    return cfg


class TestGatherTarget(CiTestCase):

    def test_everything_asked(self):
        answers = iter([TARGET, 'chapuser', '192.168.2.100', '/mnt/backup/'])
        descriptor, path, lun = attach.gather_target(
            _cfg(), input_func=lambda p: next(answers),
            getpass_func=lambda p: 's3cret')
        self.assertEqual(TARGET, descriptor.name)
        self.assertEqual('s3cret', descriptor.password)
        self.assertEqual('192.168.2.100:3260', descriptor.node_portal)
        self.assertEqual('/mnt/backup', path)
        self.assertIsNone(lun)

    def test_command_line_wins_over_config(self):
        cfg = _cfg(name='iqn.other', portal='10.0.0.1', user='u',
                   password='p', mount_path='/mnt/other', lun=3)
        input_func = mock.Mock()
        descriptor, path, lun = attach.gather_target(
            cfg, name=TARGET, mount_path='/mnt/backup', lun=1,
            input_func=input_func)
        input_func.assert_not_called()
        self.assertEqual(TARGET, descriptor.name)
        self.assertEqual('10.0.0.1', descriptor.portal)
        self.assertEqual('/mnt/backup', path)
        self.assertEqual(1, lun)

    def test_empty_answer_is_rejected(self):
        with self.assertRaises(util.InputValidationError):
            attach.gather_target(_cfg(), input_func=lambda p: '  ',
                                 getpass_func=lambda p: 'x')

    def test_root_mount_path_is_rejected(self):
        cfg = _cfg(name=TARGET, portal='10.0.0.1', user='u', password='p')
        with self.assertRaises(util.InputValidationError):
            attach.gather_target(cfg, mount_path='/')

    def test_whitespace_command_line_values_are_rejected(self):
        cfg = _cfg(portal='10.0.0.1', user='u', password='p')
        with self.assertRaisesRegex(util.InputValidationError, 'name'):
            attach.gather_target(cfg, name=' ', mount_path='/mnt/backup')
        cfg.target.name = TARGET
        with self.assertRaisesRegex(util.InputValidationError, 'mount path'):
            attach.gather_target(cfg, mount_path=' ')


class TestAttach(CiTestCase):

    def setUp(self):
        super(TestAttach, self).setUp()
        self.calls = []
        self.cfg = _cfg(name=TARGET, portal='192.168.2.100', user='chapuser',
                        password='s3cret', mount_path='/mnt/backup')
        self.prepared = storage.PreparedStorage(
            device='/dev/sdb', partition='/dev/sdb1', fstype='ext4',
            uuid=UUID, partitioned=True, formatted=True)
        self.fdata = fstab.FstabData(
            spec='UUID=%s' % UUID, path='/mnt/backup', fstype='ext4',
            options=fstab.mount_options(), freq='0', passno='2')
        self.artifact = monitor.MonitorArtifact(
            name='backup',
            script='/usr/local/bin/check-iscsi-session-backup.sh',
            cron_line='*/1 * * * * /usr/local/bin/check-iscsi-session-'
                      'backup.sh # iSCSI monitor for backup')
        self.add_patch('lunmount.commands.attach.os.geteuid', 'm_geteuid',
                       return_value=0)
        self.add_patch('lunmount.commands.attach.block.get_fs_use_info',
                       'm_fs_use', return_value=None)
        self.add_patch('lunmount.commands.attach.log.event_log', 'm_events')
        session = iscsi.Session(
            target=TARGET, portal='192.168.2.100:3260', sid=1,
            connection_state='LOGGED IN', session_state='LOGGED_IN',
            disks=[iscsi.AttachedDisk(name='sdb', state='running', lun=0)])
        self.found = [
            state.AttachmentState(target=TARGET, mount_paths=['/mnt/backup']),
            state.AttachmentState(target=TARGET, mount_paths=['/mnt/backup'],
                                  sessions=[session],
                                  mounted=['/mnt/backup']),
        ]
        self.add_patch('lunmount.commands.attach.state.discover',
                       'm_discover', side_effect=self._discover)
        steps = (
            ('deps.require', None),
            ('systemd.ensure_service', 'iscsid.service'),
            ('iscsi.connect', None),
            ('resolver.resolve_device', '/dev/sdb'),
            ('storage.prepare', self.prepared),
            ('fstab.register', self.fdata),
            ('monitor.install', self.artifact),
        )
        for name, value in steps:
            self.add_patch('lunmount.commands.attach.' + name,
                           'm_' + name.split('.')[1],
                           side_effect=self._record(name, value))

    def _record(self, name, value):
        def side_effect(*args, **kwargs):
            self.calls.append(name)
            return value
        return side_effect

    def _discover(self, *args, **kwargs):
        self.calls.append('state.discover')
        return self.found.pop(0)

    def test_steps_run_in_order(self):
        out = io.StringIO()
        result = attach.attach(self.cfg, prompt.ScriptedConfirmer(),
                               out=out)
        self.assertEqual(self.prepared, result)
        self.assertEqual(['deps.require', 'systemd.ensure_service',
                          'state.discover', 'iscsi.connect',
                          'resolver.resolve_device', 'storage.prepare',
                          'fstab.register', 'monitor.install',
                          'state.discover'], self.calls)
        self.assertIn('UUID=%s' % UUID, out.getvalue())
        self.assertIn('Session:    established', out.getvalue())
        self.assertIn('Mounted:    yes', out.getvalue())
        self.assertIn('check-iscsi-session-backup.sh', out.getvalue())
        self.assertNotIn('s3cret', out.getvalue())

    def test_configuration_flows_into_steps(self):
        self.cfg.device_timeout = 60
        self.cfg.fsck_pass = 0
        self.cfg.target.lun = 2
        attach.attach(self.cfg, prompt.ScriptedConfirmer(),
                      out=io.StringIO())
        self.m_resolve_device.assert_called_once_with(
            TARGET, portal='192.168.2.100:3260', lun=2, settle=5.0)
        self.m_register.assert_called_once_with(
            UUID, '/mnt/backup', 'ext4', fstab='/etc/fstab',
            unit_dir='/etc/systemd/system',
            options='defaults,nofail,x-systemd.device-timeout=60',
            passno='0')
        self.m_install.assert_called_once_with(
            TARGET, '192.168.2.100:3260', '/mnt/backup',
            monitor_dir='/usr/local/bin',
            log_file='/var/log/iscsi-monitor.log',
            schedule='*/1 * * * *', fstab='/etc/fstab')

    def test_requires_root(self):
        self.m_geteuid.return_value = 1000
        with self.assertRaises(util.PreconditionError):
            attach.attach(self.cfg, prompt.ScriptedConfirmer(),
                          out=io.StringIO())
        self.assertEqual([], self.calls)

    def test_failure_stops_the_flow(self):
        self.m_connect.side_effect = util.ProcessExecutionError(
            exit_code=24, stderr='iscsiadm: login failed')
        with self.assertRaises(util.ProcessExecutionError):
            attach.attach(self.cfg, prompt.ScriptedConfirmer(),
                          out=io.StringIO())
        self.assertEqual(['deps.require', 'systemd.ensure_service',
                          'state.discover'], self.calls)
        self.m_prepare.assert_not_called()

    def test_state_discovered_for_target_and_path(self):
        attach.attach(self.cfg, prompt.ScriptedConfirmer(),
                      out=io.StringIO())
        expected = mock.call(TARGET, ['/mnt/backup'], fstab_file='/etc/fstab',
                             monitor_dir='/usr/local/bin')
        self.assertEqual([expected, expected], self.m_discover.call_args_list)

    @mock.patch('lunmount.commands.attach.LOG')
    def test_incomplete_result_is_reported(self, m_log):
        self.found[1] = state.AttachmentState(target=TARGET,
                                              mount_paths=['/mnt/backup'])
        out = io.StringIO()
        attach.attach(self.cfg, prompt.ScriptedConfirmer(), out=out)
        self.assertTrue(m_log.warning.called)
        self.assertIn('Session:    absent', out.getvalue())
        self.assertIn('Mounted:    no', out.getvalue())

    def test_inputs_gathered_before_service_start(self):
        cfg = _cfg(name=TARGET, portal='192.168.2.100', user='chapuser')

        def getpass_func(prompt):
            self.calls.append('ask password')
            return 's3cret'

        attach.attach(cfg, prompt.ScriptedConfirmer(),
                      mount_path='/mnt/backup', getpass_func=getpass_func,
                      out=io.StringIO())
        self.assertEqual(['deps.require', 'ask password',
                          'systemd.ensure_service'], self.calls[:3])


class TestConfirmer(CiTestCase):

    def test_interactive_by_default(self):
        self.assertIsInstance(attach._confirmer(None),
                              prompt.InteractiveConfirmer)

    def test_fixed_answers(self):
        self.assertTrue(attach._confirmer(True).confirm('q'))
        self.assertFalse(attach._confirmer(False).confirm('q'))

# vi: ts=4 expandtab syntax=python
