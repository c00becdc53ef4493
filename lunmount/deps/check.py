# This file is part of lunmount. See LICENSE file for copyright and license info.

"""
The intent point of this module is that it can be called
and exit success or fail, indicating that deps should be there.
  python -m lunmount.deps.check [-v]
"""
import argparse
import sys

from . import find_missing_deps, missing_packages


def debug(level, msg_level, msg):
    if level >= msg_level:
        if msg[-1] != "\n":
            msg += "\n"
        sys.stderr.write(msg)


def report(verbosity=1):
    """Describe missing programs on stderr.  Returns the exit code."""
    errors = find_missing_deps()

    if len(errors) == 0:
        # exit 0 means all dependencies are available.
        debug(verbosity, 1, "No missing dependencies")
        return 0

    for e in errors:
        debug(verbosity, 1, str(e))

    debug(verbosity, 1,
          "Fix with:\n  apt-get -qy install %s\n" %
          ' '.join(missing_packages(errors)))
    return 1


def main():
    parser = argparse.ArgumentParser(
        prog='lunmount-check-deps',
        description='check dependencies for lunmount.')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        dest='verbosity')
    args, extra = parser.parse_known_args(sys.argv[1:])
    sys.exit(report(args.verbosity))


if __name__ == '__main__':
    main()

# vi: ts=4 expandtab syntax=python
