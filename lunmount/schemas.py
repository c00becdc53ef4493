# This file is part of lunmount. See LICENSE file for copyright and license info.

_path_nondev = r'(^/$|^(/[^/]+)+$)'
_fstypes = ['ext2', 'ext3', 'ext4']
_settle = {'type': 'number', 'minimum': 0}

definitions = {
    'path': {'type': 'string', 'pattern': _path_nondev},
    'nonempty': {'type': 'string', 'minLength': 1},
    'settle': _settle,
}

TARGET = {
    'type': 'object',
    'additionalProperties': False,
    'properties': {
        'name': {'$ref': '#/definitions/nonempty'},
        'portal': {'$ref': '#/definitions/nonempty'},
        'user': {'$ref': '#/definitions/nonempty'},
        'password': {'$ref': '#/definitions/nonempty'},
        'mount_path': {'$ref': '#/definitions/path'},
        'lun': {'type': 'integer', 'minimum': 0},
    },
}

CONFIG = {
    '$schema': 'http://json-schema.org/draft-07/schema#',
    'name': 'LUNMOUNT-CONFIG',
    'title': 'lunmount configuration',
    'description': ('Locations, timeouts and an optional default target '
                    'for attaching iSCSI LUNs as persistent mounts.'),
    'definitions': definitions,
    'type': 'object',
    'additionalProperties': False,
    'properties': {
        'fstab': {'$ref': '#/definitions/path'},
        'unit_dir': {'$ref': '#/definitions/path'},
        'monitor_dir': {'$ref': '#/definitions/path'},
        'monitor_log': {'$ref': '#/definitions/path'},
        'monitor_schedule': {
            'type': 'string',
            'pattern': r'^(\S+\s+){4}\S+$',
        },
        'fstype': {'type': 'string', 'enum': _fstypes},
        'mount_options': {
            'type': 'array',
            'items': {'type': 'string', 'pattern': r'^[^,\s]+$'},
        },
        'device_timeout': {'type': 'integer', 'minimum': 0},
        'fsck_pass': {'type': 'integer', 'enum': [0, 1, 2]},
        'iscsi_services': {
            'type': 'array',
            'minItems': 1,
            'items': {'type': 'string', 'pattern': r'^\S+\.service$'},
        },
        'service_settle': {'$ref': '#/definitions/settle'},
        'rescan_settle': {'$ref': '#/definitions/settle'},
        'partition_settle': {'$ref': '#/definitions/settle'},
        'reconnect_settle': {'$ref': '#/definitions/settle'},
        'showtrace': {'type': ['boolean', 'integer', 'string']},
        'verbosity': {'type': 'integer', 'minimum': 0},
        'target': TARGET,
    },
}

# vi: ts=4 expandtab syntax=python
