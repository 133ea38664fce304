# Copyright Red Hat
#
# sdboot/hook.py - sdboot kernel-install hook
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdboot.hook`` module implements the ``kernel-install(8)`` plugin
operations: ``add`` builds the boot artifact for a newly installed kernel
and ``remove`` deletes the artifacts of a kernel being uninstalled.

The ``HookContext`` class captures the arguments and environment passed
by ``kernel-install`` once, at the process boundary. The operations read
no other environment state: all remaining inputs come from files below
the configured root path and from the active ``SdbootConfig``.

Two modes are supported, selected by configuration:

``uki``
    ``dracut`` builds a unified kernel image containing the kernel,
    initramfs and command line at
    ``<boot_root>/EFI/Linux/<version>-<machine_id>[+<tries>].efi``.

``bls``
    The BLS entry written by the kernel-install loader entry plugin is
    rewritten to boot the unified image produced by dracut in place of
    the initramfs.
"""
import logging

from sdboot import *
from sdboot.cmdline import boot_options, join_options, no_image_if_not_needed
from sdboot.dracut import build_image
from sdboot.entry import (
    boot_root_from_entry_dir,
    check_machine_id,
    find_mount_point,
    loader_entry_path,
    make_entry_dir,
    read_machine_id,
    read_tries,
    remove_artifacts,
    rewrite_bls_entry,
)
from sdboot.osrelease import os_pretty_name
from sdboot.rpm import deregister_kernel

#: The kernel-install command to install a kernel.
HOOK_ADD = "add"
#: The kernel-install command to remove a kernel.
HOOK_REMOVE = "remove"

#: Valid kernel-install commands.
HOOK_COMMANDS = [HOOK_ADD, HOOK_REMOVE]

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_HOOK)

_log_debug = _log.debug
_log_debug_hook = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


class SdbootHookError(SdbootError):
    """sdboot exception indicating invalid hook usage."""

    @staticmethod
    def bad_command(command):
        return SdbootHookError(f"Unknown kernel-install command: '{command}'")

    @staticmethod
    def missing_arguments(args):
        return SdbootHookError(
            "Expected COMMAND KERNEL_VERSION ENTRY_DIR arguments, got: '%s'"
            % " ".join(args)
        )

    @staticmethod
    def missing_kernel_image(version):
        return SdbootHookError(f"No kernel image given for {version}")


def check_command(command):
    """Raise ``SdbootHookError`` unless ``command`` is ``add`` or
    ``remove``.
    """
    if command not in HOOK_COMMANDS:
        raise SdbootHookError.bad_command(command)


class HookContext(object):
    """HookContext()

    The inputs of one kernel-install hook invocation.
    """

    #: The kernel-install command (``add`` or ``remove``).
    command = None
    #: The kernel version in ``uname -r`` format.
    kernel_version = None
    #: The absolute kernel-install entry directory.
    entry_dir = None
    #: The kernel image path (``add`` only).
    kernel_image = None
    #: The machine identifier.
    machine_id = None
    #: The boot root directory.
    boot_root = None
    #: Additional initrd arguments passed by kernel-install.
    initrd_options = None

    def __str__(self):
        return "%s %s (machine_id=%s, boot_root=%s)" % (
            self.command,
            self.kernel_version,
            self.machine_id,
            self.boot_root,
        )

    def __repr__(self):
        return (
            'HookContext(command="%s", kernel_version="%s", entry_dir="%s", '
            'kernel_image="%s", machine_id="%s", boot_root="%s", '
            "initrd_options=%s)"
            % (
                self.command,
                self.kernel_version,
                self.entry_dir,
                self.kernel_image,
                self.machine_id,
                self.boot_root,
                self.initrd_options,
            )
        )

    def __init__(
        self,
        command,
        kernel_version,
        entry_dir,
        kernel_image=None,
        machine_id=None,
        boot_root=None,
        initrd_options=None,
    ):
        """Initialise a new ``HookContext``.

        :param command: the kernel-install command.
        :param kernel_version: the kernel version.
        :param entry_dir: the absolute entry directory.
        :param kernel_image: the kernel image path.
        :param machine_id: the machine identifier.
        :param boot_root: the boot root directory.
        :param initrd_options: a list of initrd arguments.
        """
        self.command = command
        self.kernel_version = kernel_version
        self.entry_dir = entry_dir
        self.kernel_image = kernel_image
        self.machine_id = machine_id
        self.boot_root = boot_root
        self.initrd_options = initrd_options or []

    @classmethod
    def from_args(cls, args, environ):
        """Build a ``HookContext`` from kernel-install arguments and
        environment.

        The machine identifier is taken from ``KERNEL_INSTALL_MACHINE_ID``
        or read from ``/etc/machine-id``. The boot root is taken from
        ``KERNEL_INSTALL_BOOT_ROOT`` or derived from the entry directory.

        :param args: the positional arguments ``COMMAND KERNEL_VERSION
                     ENTRY_DIR [KERNEL_IMAGE [INITRD_OPTIONS...]]``.
        :param environ: a mapping of environment variables.
        :returns: a new ``HookContext``.
        :rtype: HookContext
        :raises: ``SdbootHookError`` for invalid usage, or
                 ``SdbootEntryError`` if the machine identifier or
                 boot root cannot be determined.
        """
        if len(args) < 3:
            raise SdbootHookError.missing_arguments(args)

        (command, kernel_version, entry_dir) = args[0:3]
        check_command(command)

        kernel_image = args[3] if len(args) > 3 else None
        initrd_options = list(args[4:])

        machine_id = environ.get(ENV_MACHINE_ID) or read_machine_id()
        check_machine_id(machine_id)

        boot_root = environ.get(ENV_BOOT_ROOT)
        if not boot_root:
            boot_root = boot_root_from_entry_dir(entry_dir, machine_id, kernel_version)
            _log_debug_hook(
                "Boot root %s is on file system mounted at %s",
                boot_root,
                find_mount_point(boot_root),
            )

        ctx = HookContext(
            command,
            kernel_version,
            entry_dir,
            kernel_image=kernel_image,
            machine_id=machine_id,
            boot_root=boot_root,
            initrd_options=initrd_options,
        )
        _log_debug("Initialised %s from arguments", repr(ctx))
        return ctx


class AddPlan(object):
    """AddPlan()

    The resolved inputs of an ``add`` operation.
    """

    mode = None
    os_name = None
    options = None
    tries = None
    entry_path = None
    no_image = False

    def __init__(self, mode, os_name, options, tries, entry_path, no_image):
        self.mode = mode
        self.os_name = os_name
        self.options = options
        self.tries = tries
        self.entry_path = entry_path
        self.no_image = no_image

    def __str__(self):
        pstr = "Mode: %s\n" % self.mode
        pstr += "Name: %s\n" % self.os_name
        pstr += "Entry: %s\n" % self.entry_path
        pstr += "Options: %s\n" % join_options(self.options)
        pstr += "Tries: %s\n" % ("-" if self.tries is None else self.tries)
        pstr += "No image if not needed: %s" % ("yes" if self.no_image else "no")
        return pstr


def plan_add(ctx, config=None):
    """Resolve the inputs of an ``add`` operation without side effects.

    :param ctx: the ``HookContext`` for this invocation.
    :param config: a ``SdbootConfig``, or ``None`` for the active
                   configuration.
    :rtype: AddPlan
    :raises: ``SdbootEntryError`` if the tries file is invalid.
    """
    config = config or get_sdboot_config()
    os_name = os_pretty_name(ctx.kernel_version)
    options = boot_options()
    tries = read_tries()
    entry_path = loader_entry_path(
        config.mode, ctx.boot_root, ctx.machine_id, ctx.kernel_version, tries=tries
    )
    no_image = no_image_if_not_needed(options)
    return AddPlan(config.mode, os_name, options, tries, entry_path, no_image)


def hook_add(ctx, config=None):
    """Install the boot artifact for ``ctx.kernel_version``.

    :param ctx: the ``HookContext`` for this invocation.
    :param config: an optional ``SdbootConfig``.
    :returns: the exit status of the operation.
    :rtype: int
    """
    if not ctx.kernel_image:
        raise SdbootHookError.missing_kernel_image(ctx.kernel_version)

    config = config or get_sdboot_config()
    plan = plan_add(ctx, config=config)
    make_entry_dir(plan.entry_path)

    if plan.mode == MODE_UKI:
        _log_info("Building unified image for %s at %s", plan.os_name, plan.entry_path)
        return build_image(
            plan.entry_path, ctx.kernel_version, plan.options, no_image=plan.no_image
        )

    rewrite_bls_entry(plan.entry_path, ctx.boot_root, ctx.machine_id, ctx.kernel_version)
    return 0


def hook_remove(ctx, config=None):
    """Remove the boot artifacts for ``ctx.kernel_version``.

    Missing artifacts are not an error. If package deregistration is
    enabled the kernel package record is removed on a best-effort
    basis.

    :param ctx: the ``HookContext`` for this invocation.
    :param config: an optional ``SdbootConfig``.
    :returns: 0
    :rtype: int
    """
    config = config or get_sdboot_config()
    removed = remove_artifacts(ctx.boot_root, ctx.machine_id, ctx.kernel_version)
    _log_debug_hook("Removed %d artifacts for %s", len(removed), ctx.kernel_version)
    if config.deregister_package:
        deregister_kernel(ctx.kernel_version, package_format=config.package_format)
    return 0


def run_hook(ctx, config=None):
    """Run the kernel-install operation described by ``ctx``.

    :returns: the exit status of the operation.
    :rtype: int
    :raises: ``SdbootError`` on failure.
    """
    check_command(ctx.command)
    _log_debug_hook("Running hook: %s", ctx)
    if ctx.command == HOOK_REMOVE:
        return hook_remove(ctx, config=config)
    return hook_add(ctx, config=config)


__all__ = [
    "HOOK_ADD",
    "HOOK_REMOVE",
    "HOOK_COMMANDS",
    "SdbootHookError",
    "check_command",
    "HookContext",
    "AddPlan",
    "plan_add",
    "hook_add",
    "hook_remove",
    "run_hook",
]

# vim: set et ts=4 sw=4 :
