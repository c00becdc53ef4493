#!/usr/bin/python3
# This file is part of lunmount. See LICENSE file for copyright and license info.

import argparse
import os
import sys
import traceback

from .. import config
from .. import log
from .. import util
from .. import version

VERSIONSTR = version.version_string()

SUB_COMMAND_MODULES = [
    'attach', 'check-deps', 'detach', 'monitor', 'status', 'version']


def add_subcmd(subparser, subcmd):
    modname = subcmd.replace("-", "_")
    subcmd_full = "lunmount.commands.%s" % modname
    __import__(subcmd_full)
    try:
        popfunc = getattr(sys.modules[subcmd_full], 'POPULATE_SUBCMD')
    except AttributeError:
        raise AttributeError("No 'POPULATE_SUBCMD' in %s" % subcmd_full)

    popfunc(subparser.add_parser(subcmd))


def get_main_parser(stacktrace=False, verbosity=0,
                    parser_class=argparse.ArgumentParser):
    parser = parser_class(prog='lunmount', epilog='Version %s' % VERSIONSTR)
    parser.add_argument('--showtrace', action='store_true', default=stacktrace)
    parser.add_argument('-v', '--verbose', action='count', default=verbosity,
                        dest='verbosity')
    parser.add_argument('--log-file', default=sys.stderr,
                        type=argparse.FileType('a'))
    parser.add_argument('-c', '--config', action=util.MergedCmdAppend,
                        help='read configuration from cfg',
                        metavar='FILE', type=argparse.FileType("rb"),
                        dest='main_cfgopts', default=[])
    parser.add_argument('--set', action=util.MergedCmdAppend,
                        help=('define a config variable. key can be a "/" '
                              'delimited path ("target/portal=10.0.0.5"). '
                              'if key starts with "json:" then val is loaded '
                              'as json (json:mount_options="[\'noatime\']")'),
                        metavar='key=val', dest='main_cfgopts')
    parser.set_defaults(config={})

    return parser


def load_args_config(args, system_config=config.SYSTEM_CONFIG):
    """merge the system config, then -c files and --set values in order"""
    cfg = config.load_system_config(system_config)
    for (flag, val) in args.main_cfgopts:
        if flag in ('-c', '--config'):
            config.merge_config_fp(cfg, val)
            val.close()
        elif flag == '--set':
            config.merge_cmdarg(cfg, val)
    return cfg


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]

    stacktrace = (os.environ.get('LUNMOUNT_STACKTRACE', "0").lower()
                  not in ("0", "false", ""))

    try:
        verbosity = int(os.environ.get('LUNMOUNT_VERBOSITY', "0"))
    except ValueError:
        verbosity = 1

    parser = get_main_parser(stacktrace=stacktrace, verbosity=verbosity)
    subps = parser.add_subparsers(dest="subcmd")
    for subcmd in SUB_COMMAND_MODULES:
        add_subcmd(subps, subcmd)
    args = parser.parse_args(argv)

    showtrace = args.showtrace
    try:
        cfg = load_args_config(args)
    except (IOError, OSError, ValueError) as e:
        if showtrace:
            traceback.print_exc()
        sys.stderr.write("%s\n" % e)
        sys.exit(1)
    args.config = cfg

    # if user gave cmdline arguments, then set environ so subsequent
    # lunmount calls get those as default
    if 'showtrace' in cfg:
        showtrace = config.value_as_boolean(cfg['showtrace'])
    os.environ['LUNMOUNT_STACKTRACE'] = str(int(showtrace))

    verbosity = args.verbosity
    if 'verbosity' in cfg:
        verbosity = int(cfg['verbosity'])
    os.environ['LUNMOUNT_VERBOSITY'] = str(verbosity)

    if not getattr(args, 'func', None):
        # http://bugs.python.org/issue16308
        parser.print_help()
        sys.exit(1)

    log.basicConfig(stream=args.log_file, verbosity=verbosity)

    try:
        ret = args.func(args)
    except util.UserAbort as e:
        # declining to continue is a clean outcome, not a failure
        sys.stderr.write("%s\n" % e)
        sys.exit(0)
    except Exception as e:
        if showtrace:
            traceback.print_exc()
        sys.stderr.write("%s\n" % e)
        sys.exit(1)
    sys.exit(ret)


if __name__ == '__main__':
    sys.exit(main())

# vi: ts=4 expandtab syntax=python
