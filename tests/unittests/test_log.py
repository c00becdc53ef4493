# This file is part of lunmount. See LICENSE file for copyright and license info.

import logging
import re
from unittest import mock

from lunmount import log
from .helpers import CiTestCase


class TestEventLog(CiTestCase):

    def setUp(self):
        super(TestEventLog, self).setUp()
        self.addCleanup(log.close_event_log)
        self.logfile = self.tmp_path('iscsi-monitor.log')

    def test_lines_are_timestamped(self):
        events = log.event_log(self.logfile)
        events.info("Successfully mounted %s", '/mnt/backup')
        with open(self.logfile) as fp:
            content = fp.read()
        self.assertRegex(
            content,
            r'^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}: '
            r'Successfully mounted /mnt/backup\n$')

    def test_appends_to_existing_log(self):
        with open(self.logfile, 'w') as fp:
            fp.write("2026-01-01 00:00:00: earlier\n")
        log.event_log(self.logfile).info("later")
        with open(self.logfile) as fp:
            lines = fp.read().splitlines()
        self.assertEqual(2, len(lines))
        self.assertTrue(lines[0].endswith('earlier'))

    def test_same_file_gets_one_handler(self):
        first = log.event_log(self.logfile)
        second = log.event_log(self.logfile)
        self.assertIs(first, second)
        self.assertEqual(1, len(second.handlers))
        second.info("once")
        with open(self.logfile) as fp:
            self.assertEqual(1, len(fp.read().splitlines()))

    def test_close_removes_handlers(self):
        events = log.event_log(self.logfile)
        log.close_event_log()
        self.assertEqual([], events.handlers)


class TestBasicConfig(CiTestCase):

    def tearDown(self):
        log.basicConfig()

    def test_verbosity_levels(self):
        for verbosity, level in ((0, logging.WARNING), (1, logging.INFO),
                                 (2, logging.DEBUG), (5, logging.DEBUG)):
            log.basicConfig(stream=mock.Mock(), verbosity=verbosity)
            self.assertEqual(level, log.LOG.level)
            self.assertEqual(1, len(log.LOG.handlers))


class TestLoggedTime(CiTestCase):

    @mock.patch('lunmount.log.LOG')
    def test_logged_time_reports_duration(self, m_log):
        @log.logged_time("STEP")
        def step(value):
            return value * 2

        self.assertEqual(4, step(2))
        msg = m_log.debug.call_args[0][0]
        self.assertTrue(re.match(r'TIMED STEP: %\.3f', msg))

# vi: ts=4 expandtab syntax=python
