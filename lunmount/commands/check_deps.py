# This file is part of lunmount. See LICENSE file for copyright and license info.
"""Report required programs that are missing and the packages providing
them."""

from ..deps import check
from . import populate_one_subcmd


def check_deps_main(args):
    return check.report(verbosity=max(1, args.verbosity))


CMD_ARGUMENTS = (
    (tuple())
)


def POPULATE_SUBCMD(parser):
    populate_one_subcmd(parser, CMD_ARGUMENTS, check_deps_main)
    parser.description = __doc__

# vi: ts=4 expandtab syntax=python
