# Copyright Red Hat
#
# sdboot/command.py - sdboot command line interface
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdboot.command`` module provides the ``sdboot`` command line
tool: the ``hook`` command is the entry point used by ``kernel-install``
plugins, and the remaining commands inspect and prepare a system for
booting with systemd-boot.

Each command is implemented by a ``_*_cmd()`` function taking the parsed
command line arguments and returning the process exit status. sdboot
exceptions are reported on the error stream and converted to exit
status 1.
"""
from argparse import ArgumentParser
from os import environ, listdir, uname
from os.path import isdir, isfile, join as path_join
from subprocess import run, CalledProcessError, DEVNULL, PIPE
import logging
import sys

from sdboot import *
from sdboot import __version__
from sdboot.cmdline import boot_options
from sdboot.config import load_sdboot_config, write_sdboot_config
from sdboot.dracut import (
    build_rescue_image,
    configure_kernel_install,
    seed_kernel_cmdline,
    write_dracut_conf,
    write_install_conf,
)
from sdboot.entry import make_entry_dir, read_machine_id, rescue_image_path
from sdboot.hook import HOOK_ADD, HookContext, plan_add, run_hook

# Module logging configuration
_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Map of --debug option names to debug mask bits.
_DEBUG_NAMES = {
    "hook": SDBOOT_DEBUG_HOOK,
    "entry": SDBOOT_DEBUG_ENTRY,
    "build": SDBOOT_DEBUG_BUILD,
    "config": SDBOOT_DEBUG_CONFIG,
    "all": SDBOOT_DEBUG_ALL,
}

#: The kernel-install command.
_KERNEL_INSTALL = "kernel-install"

#: The bootctl command.
_BOOTCTL = "bootctl"

_console_handler = None


def _setup_logging(verbose, debug):
    """Attach a console handler to the ``sdboot`` logger and set the
    log level and debug mask from the command line options.
    """
    global _console_handler
    sdboot_log = logging.getLogger("sdboot")
    if not _console_handler:
        _console_handler = logging.StreamHandler(sys.stderr)
        _console_handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
        sdboot_log.addHandler(_console_handler)

    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1 or debug:
        level = logging.DEBUG
    sdboot_log.setLevel(level)
    _console_handler.setLevel(level)

    mask = 0
    for name in (debug or "").split(","):
        name = name.strip()
        if not name:
            continue
        if name not in _DEBUG_NAMES:
            raise ValueError("Unknown debug option: %s" % name)
        mask |= _DEBUG_NAMES[name]
    set_debug_mask(mask)


def _default_boot_root():
    """Return the boot root from the environment or ``bootctl``."""
    boot_root = environ.get(ENV_BOOT_ROOT)
    if boot_root:
        return boot_root
    try:
        p = run([_BOOTCTL, "-p"], stdin=DEVNULL, stdout=PIPE, stderr=PIPE, check=True)
    except (FileNotFoundError, CalledProcessError) as err:
        raise SdbootError("Cannot determine boot root: use --boot-root") from err
    return p.stdout.decode("utf8", errors="replace").strip()


def _context_from_cmd_args(cmd_args, version):
    machine_id = cmd_args.machine_id or read_machine_id()
    boot_root = cmd_args.boot_root or _default_boot_root()
    return HookContext(
        HOOK_ADD,
        version,
        path_join(boot_root, machine_id, version),
        machine_id=machine_id,
        boot_root=boot_root,
    )


def _hook_cmd(cmd_args):
    ctx = HookContext.from_args(cmd_args.hook_args, environ)
    return run_hook(ctx)


def _show_cmd(cmd_args):
    ctx = _context_from_cmd_args(cmd_args, cmd_args.kernel_version)
    print(plan_add(ctx))
    return 0


def _rescue_cmd(cmd_args):
    version = cmd_args.kernel_version or uname().release
    ctx = _context_from_cmd_args(cmd_args, version)
    output = rescue_image_path(ctx.boot_root, ctx.machine_id)
    make_entry_dir(output)
    _log_info("Building rescue image for %s at %s", version, output)
    return build_rescue_image(ctx.boot_root, ctx.machine_id, version, boot_options())


def installed_kernels(modules_path=None):
    """Return ``(version, vmlinuz)`` tuples for each installed kernel.

    :param modules_path: an optional modules directory.
    :rtype: list
    """
    modules_path = modules_path or sys_path(MODULES_PATH)
    kernels = []
    if not isdir(modules_path):
        return kernels
    for version in sorted(listdir(modules_path)):
        vmlinuz = path_join(modules_path, version, "vmlinuz")
        if isfile(vmlinuz):
            kernels.append((version, vmlinuz))
    return kernels


def _regenerate_cmd(cmd_args):
    kernels = installed_kernels()
    if not kernels:
        _log_warn("No installed kernels found")
        return 0
    for version, vmlinuz in kernels:
        cmd = [_KERNEL_INSTALL, "add", version, vmlinuz]
        _log_info("Regenerating boot image for %s", version)
        _log_debug("Calling kernel-install: '%s'", " ".join(cmd))
        try:
            status = run(cmd, stdin=DEVNULL, check=False).returncode
        except FileNotFoundError as err:
            raise SdbootError("%s not found" % _KERNEL_INSTALL) from err
        if status != 0:
            _log_error("kernel-install failed for %s with status %d", version, status)
            return status
    return 0


def _configure_cmd(cmd_args):
    config = get_sdboot_config()
    if cmd_args.mode:
        config.mode = cmd_args.mode
    if cmd_args.secureboot is not None:
        config.secureboot = cmd_args.secureboot
    if cmd_args.deregister is not None:
        config.deregister_package = cmd_args.deregister
    write_sdboot_config(config, path=cmd_args.config)
    write_dracut_conf(config)
    write_install_conf()
    seed_kernel_cmdline()
    configure_kernel_install(config.mode)
    return 0


def _add_context_args(parser):
    parser.add_argument(
        "-m", "--machine-id", metavar="MACHINE_ID", type=str,
        help="The machine_id value to use",
    )
    parser.add_argument(
        "-b", "--boot-root", metavar="PATH", type=str,
        help="The boot root (ESP or XBOOTLDR mount point)",
    )


def _parser():
    parser = ArgumentParser(
        prog="sdboot", description="systemd-boot kernel-install hook"
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-c", "--config", metavar="FILE", type=str,
        help="Path to the sdboot configuration file",
    )
    parser.add_argument(
        "-r", "--root", metavar="PATH", type=str,
        help="Resolve system files relative to PATH",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Increase verbosity",
    )
    parser.add_argument(
        "--debug", metavar="DEBUGOPTS", type=str,
        help="A list of debug options to enable (%s)" % ",".join(_DEBUG_NAMES),
    )
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    hook = subparsers.add_parser("hook", help="Run as a kernel-install plugin")
    hook.add_argument(
        "hook_args", metavar="ARG", nargs="*",
        help="COMMAND KERNEL_VERSION ENTRY_DIR [KERNEL_IMAGE [INITRD...]]",
    )
    hook.set_defaults(func=_hook_cmd)

    show = subparsers.add_parser("show", help="Show the resolved add operation")
    show.add_argument("kernel_version", metavar="KERNEL_VERSION", type=str)
    _add_context_args(show)
    show.set_defaults(func=_show_cmd)

    rescue = subparsers.add_parser("rescue", help="Build a rescue unified image")
    rescue.add_argument(
        "kernel_version", metavar="KERNEL_VERSION", type=str, nargs="?",
        help="The kernel version (default: the running kernel)",
    )
    _add_context_args(rescue)
    rescue.set_defaults(func=_rescue_cmd)

    regenerate = subparsers.add_parser(
        "regenerate", help="Run kernel-install for every installed kernel"
    )
    regenerate.set_defaults(func=_regenerate_cmd)

    configure = subparsers.add_parser(
        "configure", help="Configure dracut and kernel-install to use the sdboot hook"
    )
    configure.add_argument("--mode", choices=MODES, help="The hook mode")
    configure.add_argument(
        "--secureboot", dest="secureboot", action="store_true", default=None,
        help="Sign unified images with the secure boot db key",
    )
    configure.add_argument(
        "--no-secureboot", dest="secureboot", action="store_false",
        help="Do not sign unified images",
    )
    configure.add_argument(
        "--deregister", dest="deregister", action="store_true", default=None,
        help="Remove kernel package records when kernels are removed",
    )
    configure.add_argument(
        "--no-deregister", dest="deregister", action="store_false",
        help="Keep kernel package records when kernels are removed",
    )
    configure.set_defaults(func=_configure_cmd)
    return parser


def main(args):
    """Run the ``sdboot`` command line tool.

    :param args: the full argument vector including the program name.
    :returns: the process exit status.
    :rtype: int
    """
    parser = _parser()
    cmd_args = parser.parse_args(args[1:])

    try:
        _setup_logging(cmd_args.verbose, cmd_args.debug)
    except ValueError as e:
        print(e, file=sys.stderr)
        return 1

    try:
        if cmd_args.root:
            set_root_path(cmd_args.root)
        if cmd_args.config:
            set_sdboot_config_path(cmd_args.config)
        load_sdboot_config(path=cmd_args.config)
        return cmd_args.func(cmd_args)
    except (SdbootError, ValueError, OSError) as e:
        _log_error("%s", e)
        if get_debug_mask():
            raise
        return 1


__all__ = [
    "installed_kernels",
    "main",
]

# vim: set et ts=4 sw=4 :
