# This file is part of lunmount. See LICENSE file for copyright and license info.

import sys

from lunmount.commands.main import main

if __name__ == '__main__':
    sys.exit(main())

# vi: ts=4 expandtab syntax=python
