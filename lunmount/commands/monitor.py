# This file is part of lunmount. See LICENSE file for copyright and license info.
"""Check one iSCSI session and its mount once, repairing what is broken.

This is what the generated cron scripts run.  It never asks questions.
"""

from lunmount import log, probe
from . import command_config, populate_one_subcmd


def monitor_main(args):
    cfg = command_config(args)
    events = log.event_log(args.log or cfg.monitor_log)
    result = probe.run_probe(args.target, args.portal, args.mount_path,
                             events, fstab=args.fstab or cfg.fstab,
                             settle=cfg.reconnect_settle)
    log.close_event_log()
    return 0 if result.mounted else 1


CMD_ARGUMENTS = (
    (('-t', '--target'),
     {'help': 'IQN of the monitored target', 'metavar': 'IQN',
      'action': 'store', 'required': True}),
    (('-p', '--portal'),
     {'help': 'portal address, HOST or HOST:PORT', 'action': 'store',
      'required': True}),
    (('-m', '--mount-path'),
     {'help': 'mount path to keep mounted', 'metavar': 'PATH',
      'action': 'store', 'required': True}),
    (('--fstab',),
     {'help': 'fstab holding the mount path', 'metavar': 'FILE',
      'action': 'store', 'default': None}),
    (('--log',),
     {'help': 'append-only event log', 'metavar': 'FILE',
      'action': 'store', 'default': None}),
)


def POPULATE_SUBCMD(parser):
    populate_one_subcmd(parser, CMD_ARGUMENTS, monitor_main)
    parser.description = __doc__

# vi: ts=4 expandtab syntax=python
