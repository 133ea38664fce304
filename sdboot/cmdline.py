# Copyright Red Hat
#
# sdboot/cmdline.py - kernel command line resolution
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdboot.cmdline`` module resolves the kernel command line
options to embed in a boot image.

Options are read from the first available of an ordered list of
candidate sources: ``/etc/kernel/cmdline``, ``/usr/lib/kernel/cmdline``,
and finally the command line of the running kernel in ``/proc/cmdline``.
When the running kernel's command line is used, the boot loader supplied
``initrd=`` and ``BOOT_IMAGE=`` arguments are discarded.
"""
from os.path import exists as path_exists
import logging

from sdboot import *

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_HOOK)

_log_debug = _log.debug
_log_debug_hook = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Options added by the boot loader that must not be copied.
_BOOT_LOADER_PREFIXES = ("initrd=", "BOOT_IMAGE=")

#: Root device option prefix that allows dracut to skip the image.
ROOT_PARTUUID_PREFIX = "root=PARTUUID="


def _read_options_file(path):
    """Return the options from the file at ``path``, or ``None`` if
    the file does not exist.
    """
    if not path_exists(path):
        return None
    with open(path, "r") as f:
        return f.read().split()


def _read_proc_cmdline(path):
    """Return the running kernel's options from ``path`` with boot loader
    arguments removed, or ``None`` if the file does not exist.
    """
    options = _read_options_file(path)
    if options is None:
        return None
    return [opt for opt in options if not opt.startswith(_BOOT_LOADER_PREFIXES)]


def running_kernel_options():
    """Return the options of the running kernel with boot loader
    arguments removed, or an empty list if they cannot be read.
    """
    return _read_proc_cmdline(sys_path(PROC_CMDLINE_PATH)) or []


def cmdline_sources():
    """Return the ordered list of ``(path, reader)`` candidates used to
    resolve the kernel command line.

    :rtype: list
    """
    return [
        (sys_path(KERNEL_CMDLINE_PATH), _read_options_file),
        (sys_path(KERNEL_CMDLINE_LIB_PATH), _read_options_file),
        (sys_path(PROC_CMDLINE_PATH), _read_proc_cmdline),
    ]


def boot_options(sources=None):
    """Resolve the kernel command line options.

    Each ``(path, reader)`` candidate is tried in order and the result
    of the first reader that finds its file is returned.

    :param sources: an optional list of ``(path, reader)`` candidates;
                    defaults to ``cmdline_sources()``.
    :returns: the list of command line options.
    :rtype: list
    """
    sources = sources or cmdline_sources()
    for path, reader in sources:
        options = reader(path)
        if options is not None:
            _log_debug_hook("Read %d boot options from '%s'", len(options), path)
            return options
    _log_warn("No kernel command line source found: using empty command line")
    return []


def join_options(options):
    """Join a list of boot options into a single command line string."""
    return " ".join(options)


def no_image_if_not_needed(options):
    """Return ``True`` if the root device is identified by partition
    UUID in ``options``.

    :param options: a list of boot options.
    :rtype: bool
    """
    return any(opt.startswith(ROOT_PARTUUID_PREFIX) for opt in options)


__all__ = [
    "ROOT_PARTUUID_PREFIX",
    "running_kernel_options",
    "cmdline_sources",
    "boot_options",
    "join_options",
    "no_image_if_not_needed",
]

# vim: set et ts=4 sw=4 :
