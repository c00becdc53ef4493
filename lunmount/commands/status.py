# This file is part of lunmount. See LICENSE file for copyright and license info.
"""Show sessions, devices, fstab lines, mounts and monitors of a target."""

import sys

from lunmount import state, util
from . import command_config, populate_one_subcmd


def status_main(args):
    cfg = command_config(args)
    target = args.target or cfg.target.name
    mount_paths = args.mount_paths
    if not mount_paths and cfg.target.mount_path:
        mount_paths = [cfg.target.mount_path]
    found = state.discover(target, mount_paths, fstab_file=cfg.fstab,
                           monitor_dir=cfg.monitor_dir)
    if args.json:
        sys.stdout.write(util.json_dumps(found.as_dict()) + "\n")
    else:
        sys.stdout.write(state.describe(found))
    return 0


CMD_ARGUMENTS = (
    (('-t', '--target'),
     {'help': 'IQN of the target', 'metavar': 'IQN', 'action': 'store',
      'default': None}),
    (('-m', '--mount-path'),
     {'help': 'mount path to report, may be repeated', 'metavar': 'PATH',
      'action': 'append', 'dest': 'mount_paths', 'default': None}),
    (('--json',),
     {'help': 'print the state as json', 'action': 'store_true',
      'default': False}),
)


def POPULATE_SUBCMD(parser):
    populate_one_subcmd(parser, CMD_ARGUMENTS, status_main)
    parser.description = __doc__

# vi: ts=4 expandtab syntax=python
