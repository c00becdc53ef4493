# This file is part of lunmount. See LICENSE file for copyright and license info.

import json
import os
import typing

import attr
import jsonschema
import yaml

from lunmount import schemas
from lunmount.log import LOG

SYSTEM_CONFIG = '/etc/lunmount/lunmount.yaml'
PASSWORD_ENV = 'LUNMOUNT_CHAP_PASSWORD'


class ConfigError(ValueError):
    pass


def merge_config_fp(cfgin, fp):
    merge_config_str(cfgin, fp.read())


def merge_config_str(cfgin, cfgstr):
    cfg2 = yaml.safe_load(cfgstr)
    if cfg2 is None:
        return
    if not isinstance(cfg2, dict):
        raise ConfigError(
            "Failed reading config. not a dictionary: %s" % cfgstr)

    merge_config(cfgin, cfg2)


def merge_config(cfg, cfg2):
    # update cfg by merging cfg2 over the top
    for k, v in cfg2.items():
        if isinstance(v, dict) and isinstance(cfg.get(k, None), dict):
            merge_config(cfg[k], v)
        else:
            cfg[k] = v


def merge_cmdarg(cfg, cmdarg, delim="/"):
    merge_config(cfg, cmdarg2cfg(cmdarg, delim))


def cmdarg2cfg(cmdarg, delim="/"):
    if '=' not in cmdarg:
        raise ConfigError('no "=" in "%s"' % cmdarg)

    key, val = cmdarg.split("=", 1)
    cfg = {}
    cur = cfg

    is_json = False
    if key.startswith("json:"):
        is_json = True
        key = key[5:]

    items = key.split(delim)
    for item in items[:-1]:
        cur[item] = {}
        cur = cur[item]

    if is_json:
        try:
            val = json.loads(val)
        except (ValueError, TypeError):
            raise ConfigError("setting of key '%s' had invalid json: %s" %
                              (key, val))

    # this would occur if 'json:={"topkey": "topval"}'
    if items[-1] == "":
        cfg = val
    else:
        cur[items[-1]] = val

    return cfg


def load_config(cfg_file):
    with open(cfg_file, "r") as fp:
        cfg = yaml.safe_load(fp.read())
    return cfg or {}


def load_system_config(path=SYSTEM_CONFIG):
    if not os.path.exists(path):
        return {}
    LOG.debug("Reading system configuration %s", path)
    return load_config(path)


def value_as_boolean(value):
    false_values = (False, None, 0, '0', 'False', 'false', 'None', 'none', '')
    return value not in false_values


def _as_float(value):
    return float(value) if isinstance(value, (int, float, str)) else value


def _as_int(value):
    return int(value) if isinstance(value, (int, str)) else value


@attr.s(auto_attribs=True)
class TargetConfig:
    name: typing.Optional[str] = None
    portal: typing.Optional[str] = None
    user: typing.Optional[str] = None
    password: typing.Optional[str] = attr.ib(default=None, repr=False)
    mount_path: typing.Optional[str] = None
    lun: typing.Optional[int] = None


@attr.s(auto_attribs=True)
class LunmountConfig:
    fstab: str = '/etc/fstab'
    unit_dir: str = '/etc/systemd/system'
    monitor_dir: str = '/usr/local/bin'
    monitor_log: str = '/var/log/iscsi-monitor.log'
    monitor_schedule: str = '*/1 * * * *'
    fstype: str = 'ext4'
    mount_options: typing.List[str] = attr.Factory(list)
    device_timeout: int = attr.ib(default=30, converter=_as_int)
    fsck_pass: int = attr.ib(default=2, converter=_as_int)
    iscsi_services: typing.List[str] = attr.Factory(
        lambda: ['iscsid.service', 'open-iscsi.service'])
    service_settle: float = attr.ib(default=2.0, converter=_as_float)
    rescan_settle: float = attr.ib(default=5.0, converter=_as_float)
    partition_settle: float = attr.ib(default=3.0, converter=_as_float)
    reconnect_settle: float = attr.ib(default=2.0, converter=_as_float)
    target: TargetConfig = attr.Factory(TargetConfig)


class SerializationError(Exception):
    def __init__(self, obj, path, message):
        self.obj = obj
        self.path = path
        self.message = message

    def __str__(self):
        p = self.path
        if not p:
            p = 'top-level'
        return f"processing {self.obj}: at {p}, {self.message}"


@attr.s(auto_attribs=True)
class SerializationContext:
    obj: typing.Any
    cur: typing.Any
    path: str
    metadata: typing.Optional[typing.Dict]

    @classmethod
    def new(cls, obj):
        return SerializationContext(obj, obj, '', {})

    def child(self, path, cur, metadata=None):
        if metadata is None:
            metadata = self.metadata
        return attr.evolve(
            self, path=self.path + path, cur=cur, metadata=metadata)

    def error(self, message):
        raise SerializationError(self.obj, self.path, message)

    def assert_type(self, typ):
        if type(self.cur) is not typ:
            self.error("{!r} is not a {}".format(self.cur, typ))


class Deserializer:

    def __init__(self):
        self.typing_walkers = {
            list: self._walk_List,
            typing.List: self._walk_List,
            typing.Union: self._walk_Union,
            }
        self.type_deserializers = {}
        for typ in int, float, str, bool, list, dict, type(None):
            self.type_deserializers[typ] = self._scalar

    def _scalar(self, annotation, context):
        context.assert_type(annotation)
        return context.cur

    def _walk_List(self, meth, args, context):
        return [
            meth(args[0], context.child(f'[{i}]', v))
            for i, v in enumerate(context.cur)
            ]

    def _walk_Union(self, meth, args, context):
        if context.cur is None:
            return context.cur
        NoneType = type(None)
        if NoneType in args:
            args = [a for a in args if a is not NoneType]
            if len(args) == 1:
                # I.e. Optional[thing]
                return meth(args[0], context)
        context.error(f"cannot deserialize Union[{args}]")

    def _deserialize_attr(self, annotation, context):
        context.assert_type(dict)
        args = {}
        fields = {
            field.name: field for field in attr.fields(annotation)
            }
        for key, value in context.cur.items():
            key = key.replace("-", "_")
            if key not in fields:
                continue
            field = fields[key]
            if field.converter:
                value = field.converter(value)
            args[field.name] = self._deserialize(
                field.type,
                context.child(f'[{key!r}]', value, field.metadata))
        return annotation(**args)

    def _deserialize(self, annotation, context):
        if annotation is None:
            context.assert_type(type(None))
            return None
        if annotation is typing.Any:
            return context.cur
        if attr.has(annotation):
            return self._deserialize_attr(annotation, context)
        origin = getattr(annotation, '__origin__', None)
        if origin is not None:
            return self.typing_walkers[origin](
                self._deserialize, annotation.__args__, context)
        return self.type_deserializers[annotation](annotation, context)

    def deserialize(self, annotation, value):
        context = SerializationContext.new(value)
        return self._deserialize(annotation, context)


T = typing.TypeVar("T")


def fromdict(cls: typing.Type[T], d) -> T:
    deserializer = Deserializer()
    return deserializer.deserialize(cls, d)


def validate(cfg):
    try:
        jsonschema.validate(cfg, schemas.CONFIG)
    except jsonschema.exceptions.ValidationError as e:
        where = '/'.join(str(p) for p in e.absolute_path) or 'top-level'
        raise ConfigError("Invalid configuration at %s: %s" %
                          (where, e.message))


def from_cfg(cfg, environ=None):
    """Validate the merged config dictionary and return a LunmountConfig.

    The CHAP secret is taken from the environment when the configuration
    does not carry one.
    """
    if environ is None:
        environ = os.environ
    cfg = dict(cfg or {})
    validate(cfg)
    try:
        result = fromdict(LunmountConfig, cfg)
    except SerializationError as e:
        raise ConfigError(str(e))
    if not result.target.password and environ.get(PASSWORD_ENV):
        result.target.password = environ[PASSWORD_ENV]
    return result

# vi: ts=4 expandtab syntax=python
