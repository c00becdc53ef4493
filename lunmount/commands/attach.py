# This file is part of lunmount. See LICENSE file for copyright and license info.
"""Attach an iSCSI LUN and make it a persistent, monitored mount."""

import getpass
import os
import sys

from lunmount import (block, deps, fstab, log, monitor, prompt, resolver,
                      state, storage, systemd, util)
from lunmount.block import iscsi
from lunmount.log import LOG
from . import MutuallyExclusiveGroup, command_config, populate_one_subcmd


def _confirmer(answer):
    if answer is None:
        return prompt.InteractiveConfirmer()
    return prompt.FixedConfirmer(answer)


def gather_target(cfg, name=None, portal=None, user=None, mount_path=None,
                  lun=None, input_func=input, getpass_func=getpass.getpass):
    """Merge command line values over the configured target and ask for
    whatever is still missing.  Nothing is changed on the host here."""
    known = {
        'name': name or cfg.target.name,
        'portal': portal or cfg.target.portal,
        'user': user or cfg.target.user,
        'password': cfg.target.password,
        'mount_path': mount_path or cfg.target.mount_path,
    }
    values = prompt.gather(known, input_func=input_func,
                           getpass_func=getpass_func)
    descriptor = iscsi.TargetDescriptor(
        name=values['name'], portal=values['portal'], user=values['user'],
        password=values['password'])
    descriptor.validate()
    mount_path = (values['mount_path'] or '').strip()
    if not mount_path:
        raise util.InputValidationError("A mount path is required.")
    mount_path = fstab.normalize_path(mount_path)
    # fail before any change when no monitor name can be derived
    monitor.monitor_name(mount_path)
    if lun is None:
        lun = cfg.target.lun
    return descriptor, mount_path, lun


def _report_existing(found, mount_path):
    """Log what an earlier run left for this target and mount path."""
    if found.session_state != iscsi.SessionState.ABSENT:
        LOG.info("Session for %s is already %s", found.target,
                 found.session_state.name.lower())
    for entry in found.fstab_entries:
        LOG.info("fstab already mounts %s at %s, the line will be replaced",
                 entry.spec, entry.path)
    if mount_path in found.mounted:
        LOG.info("%s is already mounted", mount_path)
    for art in found.artifacts:
        LOG.info("Monitor script %s exists, it will be replaced", art.script)
    for err in found.errors:
        LOG.warning("State discovery: %s", err)


def summary(descriptor, service, prepared, fdata, artifact, found):
    lines = [
        "iSCSI target %s attached" % descriptor.name,
        "  Portal:     %s" % descriptor.node_portal,
        "  Service:    %s" % service,
        "  Session:    %s" % found.session_state.name.lower(),
        "  Device:     %s" % prepared.device,
        "  Partition:  %s%s" % (prepared.partition,
                                ' (created)' if prepared.partitioned else ''),
        "  Filesystem: %s UUID=%s%s" % (
            prepared.fstype, prepared.uuid,
            ' (formatted)' if prepared.formatted else ''),
        "  fstab:      %s" % fstab.fstab_line_for_data(fdata).rstrip('\n'),
        "  Mounted:    %s" % ('yes' if fdata.path in found.mounted else 'no'),
        "  Monitor:    %s" % artifact.script,
        "  Cron:       %s" % artifact.cron_line,
    ]
    usage = block.get_fs_use_info(fdata.path)
    if usage:
        lines.append("Mount usage:")
        lines.extend('  ' + line for line in usage.splitlines())
    return '\n'.join(lines) + '\n'


def attach(cfg, confirmer, name=None, portal=None, user=None,
           mount_path=None, lun=None, input_func=input,
           getpass_func=getpass.getpass, out=None):
    """Run the whole provisioning flow.  Any failure aborts the run."""
    if out is None:
        out = sys.stdout
    if os.geteuid() != 0:
        raise util.PreconditionError("This command must be run as root")
    deps.require()

    descriptor, mount_path, lun = gather_target(
        cfg, name=name, portal=portal, user=user, mount_path=mount_path,
        lun=lun, input_func=input_func, getpass_func=getpass_func)

    service = systemd.ensure_service(cfg.iscsi_services,
                                     settle=cfg.service_settle)
    _report_existing(state.discover(descriptor.name, [mount_path],
                                    fstab_file=cfg.fstab,
                                    monitor_dir=cfg.monitor_dir),
                     mount_path)
    iscsi.connect(descriptor)
    device = resolver.resolve_device(descriptor.name,
                                     portal=descriptor.node_portal, lun=lun,
                                     settle=cfg.rescan_settle)
    LOG.info("Using iSCSI device %s", device)

    prepared = storage.prepare(device, confirmer, mount_path=mount_path,
                               fstype=cfg.fstype,
                               settle=cfg.partition_settle)

    options = fstab.mount_options(cfg.device_timeout, cfg.mount_options)
    fdata = fstab.register(prepared.uuid, mount_path, prepared.fstype,
                           fstab=cfg.fstab, unit_dir=cfg.unit_dir,
                           options=options, passno=str(cfg.fsck_pass))

    artifact = monitor.install(descriptor.name, descriptor.node_portal,
                               mount_path, monitor_dir=cfg.monitor_dir,
                               log_file=cfg.monitor_log,
                               schedule=cfg.monitor_schedule,
                               fstab=cfg.fstab)

    # the result is read back the same way status and detach see it
    found = state.discover(descriptor.name, [mount_path],
                           fstab_file=cfg.fstab, monitor_dir=cfg.monitor_dir)
    if (found.session_state != iscsi.SessionState.ESTABLISHED or
            mount_path not in found.mounted):
        LOG.warning("Attachment is not fully established:\n%s",
                    state.describe(found))

    events = log.event_log(cfg.monitor_log)
    events.info("Attached %s (%s) at %s UUID=%s", descriptor.name, device,
                mount_path, prepared.uuid)

    out.write(summary(descriptor, service, prepared, fdata, artifact, found))
    return prepared


def attach_main(args):
    cfg = command_config(args)
    attach(cfg, _confirmer(args.answer), name=args.target,
           portal=args.portal, user=args.user, mount_path=args.mount_path,
           lun=args.lun)
    return 0


CMD_ARGUMENTS = (
    (('-t', '--target'),
     {'help': 'IQN of the target to attach', 'metavar': 'IQN',
      'action': 'store', 'default': None}),
    (('-p', '--portal'),
     {'help': 'portal address, HOST or HOST:PORT', 'action': 'store',
      'default': None}),
    (('-u', '--user'),
     {'help': 'CHAP username. The password is read from the configuration, '
              'the LUNMOUNT_CHAP_PASSWORD environment variable or a prompt',
      'action': 'store', 'default': None}),
    (('-m', '--mount-path'),
     {'help': 'where the LUN is mounted', 'metavar': 'PATH',
      'action': 'store', 'default': None}),
    (('--lun',),
     {'help': 'LUN number to use when the target exposes several',
      'type': int, 'default': None}),
    MutuallyExclusiveGroup((
        (('-y', '--yes'),
         {'help': 'answer yes to every destructive question',
          'action': 'store_const', 'const': True, 'dest': 'answer',
          'default': None}),
        (('-n', '--no'),
         {'help': 'answer no to every destructive question, keeping '
                  'existing data', 'action': 'store_const', 'const': False,
          'dest': 'answer', 'default': None}),
    )),
)


def POPULATE_SUBCMD(parser):
    populate_one_subcmd(parser, CMD_ARGUMENTS, attach_main)
    parser.description = __doc__

# vi: ts=4 expandtab syntax=python
