# This file is part of lunmount. See LICENSE file for copyright and license info.

# The 'FEATURES' variable is provided so that callers of lunmount
# can determine which features are supported.  Each entry should have
# a consistent meaning.
FEATURES = [
    # attach creates a GPT label so LUNs larger than 2TiB are usable
    'GPT_PARTITION_TABLE',
    # the health monitor is installed as a cron entry per mount path
    'CRON_HEALTH_MONITOR',
    # configuration files are validated against a json schema
    'CONFIG_SCHEMA',
    # subcommand 'status' is present
    'SUBCOMMAND_STATUS',
    # ambiguous multi-LUN targets are rejected unless --lun is given
    'EXPLICIT_LUN_SELECTION',
    # has version module
    'HAS_VERSION_MODULE',
]

__version__ = "1.3"

# vi: ts=4 expandtab syntax=python
