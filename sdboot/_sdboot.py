# Copyright Red Hat
#
# sdboot/_sdboot.py - sdboot package initialisation
#
# SPDX-License-Identifier: GPL-2.0-only
"""This module provides the declarations, classes, and functions exposed
in the main ``sdboot`` module. Users of sdboot should not import this
module directly: it will be imported automatically with the top level
module.
"""
from os.path import exists as path_exists, isabs, join as path_join
import logging
import string

#: The default root directory against which system files are resolved.
DEFAULT_ROOT_PATH = "/"

#: The kernel-install configuration directory.
KERNEL_CONF_DIR = "/etc/kernel"

#: The default sdboot configuration file.
SDBOOT_CONFIG_FILE = "sdboot.conf"
DEFAULT_SDBOOT_CONFIG_PATH = path_join(KERNEL_CONF_DIR, SDBOOT_CONFIG_FILE)

#: Configuration file mode
SDBOOT_CONFIG_MODE = 0o644

#: Boot counting configuration file.
KERNEL_TRIES_PATH = "/etc/kernel/tries"
#: Administrator kernel command line.
KERNEL_CMDLINE_PATH = "/etc/kernel/cmdline"
#: Vendor kernel command line.
KERNEL_CMDLINE_LIB_PATH = "/usr/lib/kernel/cmdline"
#: Command line of the running kernel.
PROC_CMDLINE_PATH = "/proc/cmdline"
#: Local os-release file.
OS_RELEASE_PATH = "/etc/os-release"
#: Vendor os-release file.
OS_RELEASE_LIB_PATH = "/usr/lib/os-release"
#: Machine identifier file.
MACHINE_ID_PATH = "/etc/machine-id"
#: Installed kernel modules directory.
MODULES_PATH = "/usr/lib/modules"

#: Build a unified kernel image under ``EFI/Linux``.
MODE_UKI = "uki"
#: Post-process a BLS entry under ``loader/entries``.
MODE_BLS = "bls"

#: Valid hook modes.
MODES = [MODE_UKI, MODE_BLS]

#: Environment variable carrying the machine identifier.
ENV_MACHINE_ID = "KERNEL_INSTALL_MACHINE_ID"
#: Environment variable carrying the boot root.
ENV_BOOT_ROOT = "KERNEL_INSTALL_BOOT_ROOT"

#
# Logging
#

SDBOOT_LOG_DEBUG = logging.DEBUG
SDBOOT_LOG_INFO = logging.INFO
SDBOOT_LOG_WARN = logging.WARNING
SDBOOT_LOG_ERROR = logging.ERROR

_log_levels = (SDBOOT_LOG_DEBUG, SDBOOT_LOG_INFO, SDBOOT_LOG_WARN, SDBOOT_LOG_ERROR)

_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

# sdboot debugging levels
SDBOOT_DEBUG_HOOK = 1
SDBOOT_DEBUG_ENTRY = 2
SDBOOT_DEBUG_BUILD = 4
SDBOOT_DEBUG_CONFIG = 8
SDBOOT_DEBUG_ALL = (
    SDBOOT_DEBUG_HOOK | SDBOOT_DEBUG_ENTRY | SDBOOT_DEBUG_BUILD | SDBOOT_DEBUG_CONFIG
)

__debug_mask = 0


class SdbootError(Exception):
    """Base class of all sdboot exceptions."""

    pass


class SdbootLogger(logging.Logger):
    """SdbootLogger()

    A ``logging.Logger`` with a per-module mask: messages logged with
    ``debug_masked()`` are emitted only when a bit in the module mask
    is also set in the package debug mask, so that hook, entry, build
    and configuration tracing can be enabled separately from the
    command line with ``--debug``.
    """

    mask_bits = 0

    def set_debug_mask(self, mask_bits):
        """Set the debug mask for this ``SdbootLogger``.

        This should normally be set to the ``SDBOOT_DEBUG_*`` value
        corresponding to the ``sdboot`` sub-module that this instance
        of ``SdbootLogger`` belongs to.

        :param mask_bits: The bits to set in this logger's mask.
        :rtype: None
        """
        if mask_bits < 0 or mask_bits > SDBOOT_DEBUG_ALL:
            raise ValueError(
                "Invalid SdbootLogger mask bits: 0x%x" % (mask_bits & ~SDBOOT_DEBUG_ALL)
            )

        self.mask_bits = mask_bits

    def debug_masked(self, msg, *args, **kwargs):
        """Log a debug message if it passes the current debug mask.

        :param msg: the message to be logged
        :rtype: None
        """
        if self.mask_bits & get_debug_mask():
            self.debug(msg, *args, **kwargs)


logging.setLoggerClass(SdbootLogger)


def get_debug_mask():
    """Return the current debug mask for the ``sdboot`` package.

    :returns: The current debug mask value
    :rtype: int
    """
    return __debug_mask


def set_debug_mask(mask):
    """Set the debug mask for the ``sdboot`` package.

    :param mask: the logical OR of the ``SDBOOT_DEBUG_*``
                 values to log.
    :rtype: None
    """
    global __debug_mask
    if mask < 0 or mask > SDBOOT_DEBUG_ALL:
        raise ValueError("Invalid sdboot debug mask: %d" % mask)
    __debug_mask = mask


class SdbootConfig(object):
    """Class representing sdboot persistent configuration values."""

    # Initialise members from global defaults

    mode = MODE_UKI

    dracut = "dracut"
    secureboot = False
    secureboot_cert = "/usr/share/secureboot/keys/db/db.pem"
    secureboot_key = "/usr/share/secureboot/keys/db/db.key"

    deregister_package = False
    package_format = "kernel-core-%s"

    def __str__(self):
        """Return a string representation of this ``SdbootConfig`` in
        sdboot.conf (INI) notation.
        """
        cstr = ""
        cstr += "[global]\n"
        cstr += "mode = %s\n\n" % self.mode

        cstr += "[dracut]\n"
        cstr += "dracut = %s\n" % self.dracut
        cstr += "secureboot = %s\n" % self.secureboot
        cstr += "secureboot_cert = %s\n" % self.secureboot_cert
        cstr += "secureboot_key = %s\n\n" % self.secureboot_key

        cstr += "[remove]\n"
        cstr += "deregister_package = %s\n" % self.deregister_package
        cstr += "package_format = %s\n" % self.package_format

        return cstr

    def __repr__(self):
        """Return a string representation of this ``SdbootConfig`` in
        SdbootConfig initialiser notation.
        """
        cstr = 'SdbootConfig(mode="%s", dracut="%s", ' % (self.mode, self.dracut)
        cstr += 'secureboot=%s, secureboot_cert="%s", ' % (
            self.secureboot,
            self.secureboot_cert,
        )
        cstr += 'secureboot_key="%s", ' % self.secureboot_key
        cstr += "deregister_package=%s, " % self.deregister_package
        cstr += 'package_format="%s")' % self.package_format

        return cstr

    def __init__(
        self,
        mode=None,
        dracut=None,
        secureboot=None,
        secureboot_cert=None,
        secureboot_key=None,
        deregister_package=None,
        package_format=None,
    ):
        """Initialise a new ``SdbootConfig`` object with the supplied
        configuration values, or defaults for any unset arguments.

        :param mode: the hook mode (``MODE_UKI`` or ``MODE_BLS``)
        :param dracut: the image builder command
        :param secureboot: sign unified images with the db key
        :param secureboot_cert: path to the secure boot certificate
        :param secureboot_key: path to the secure boot key
        :param deregister_package: remove the kernel package record
                                   when a kernel is removed
        :param package_format: package name format for deregistration
        """
        if mode is not None and mode not in MODES:
            raise ValueError("Invalid sdboot mode: %s" % mode)
        self.mode = mode or self.mode
        self.dracut = dracut or self.dracut
        self.secureboot = secureboot or self.secureboot
        self.secureboot_cert = secureboot_cert or self.secureboot_cert
        self.secureboot_key = secureboot_key or self.secureboot_key
        self.deregister_package = deregister_package or self.deregister_package
        self.package_format = package_format or self.package_format


__config = SdbootConfig()
__root_path = DEFAULT_ROOT_PATH
__sdboot_config_path = DEFAULT_SDBOOT_CONFIG_PATH


def set_sdboot_config(config):
    """Set the active configuration to the object ``config`` (which may
    be any class that includes the ``SdbootConfig`` attributes).

    :param config: a configuration object
    :returns: None
    :raises: TypeError if ``config`` does not appear to have the
             correct attributes.
    """
    global __config

    def has_value(obj, attr):
        return hasattr(obj, attr) and getattr(obj, attr) is not None

    if not (has_value(config, "mode") and has_value(config, "dracut")):
        raise TypeError("config does not appear to be a SdbootConfig object.")

    __config = config


def get_sdboot_config():
    """Return the active ``SdbootConfig`` object.

    :rtype: SdbootConfig
    :returns: the active configuration object
    """
    return __config


def get_root_path():
    """Return the root directory used to resolve system files.

    :returns: the system root path.
    :rtype: str
    """
    return __root_path


def set_root_path(root_path):
    """Set the root directory used to resolve system files.

    All reads of ``/etc``, ``/usr/lib`` and ``/proc`` files are made
    relative to this directory. It defaults to ``/`` and is changed
    by the test suite to point at a sandbox.

    :param root_path: an absolute path to an existing directory.
    :returns: ``None``
    :raises: ValueError if ``root_path`` is relative or missing.
    """
    global __root_path
    if not isabs(root_path):
        raise ValueError("root_path must be an absolute path: %s" % root_path)

    if not path_exists(root_path):
        raise ValueError("Path '%s' does not exist" % root_path)

    __root_path = root_path
    _log_debug("Set root path to: %s", root_path)


def sys_path(path):
    """Return the absolute system path ``path`` resolved against the
    configured root directory.

    :param path: an absolute system path, e.g. ``/etc/kernel/tries``.
    :returns: the path as seen from the configured root.
    :rtype: str
    """
    if __root_path == DEFAULT_ROOT_PATH:
        return path
    return path_join(__root_path, path.lstrip("/"))


def get_sdboot_config_path():
    """Return the currently configured sdboot configuration file path.

    :rtype: str
    :returns: the current sdboot configuration file path
    """
    return __sdboot_config_path


def set_sdboot_config_path(path):
    """Set the sdboot configuration file path."""
    global __sdboot_config_path
    if not isabs(path):
        raise ValueError("Configuration path must be absolute: %s" % path)
    __sdboot_config_path = path
    _log_debug("set sdboot_config_path to '%s'", path)


#
# Generic routines for parsing name-value pairs.
#


def blank_or_comment(line):
    """Return ``True`` for blank lines and ``#`` comments.

    :param line: a line of os-release or configuration text.
    :returns: ``True`` if the line is blank or a comment,
              and ``False`` otherwise.
    :rtype: bool
    """
    return not line.strip() or line.lstrip().startswith("#")


def parse_name_value(nvp, separator="="):
    """Parse a name value pair string.

    Split ``NAME="value"`` on the first separator. Matching single or
    double quotes around the value are removed; names may contain only
    letters, digits and underscores.

    :param nvp: A name value pair.
    :param separator: The separator character used in this name
                      value pair.
    :returns: A ``(name, value)`` tuple.
    :rtype: (string, string) tuple.
    """
    val_err = ValueError("Malformed name/value pair: %s" % nvp)
    try:
        # Only strip newlines: values may contain embedded
        # whitespace anywhere within the string.
        name, value = nvp.rstrip("\n").split(separator, 1)
    except ValueError:
        raise val_err

    name = name.strip()
    value = value.strip()

    valid_name_chars = string.ascii_letters + string.digits + "_"
    bad_chars = [c for c in name if c not in valid_name_chars]
    if not name or any(bad_chars):
        raise ValueError("Invalid characters in name: %s (%s)" % (name, bad_chars))

    if len(value) > 1 and value[0] == value[-1] and value[0] in "\"'":
        value = value[1:-1]

    return (name, value)


def read_first_line(path):
    """Return the first line of the file at ``path`` with trailing
    white space removed, or ``None`` if the file does not exist.

    :param path: the path to read.
    :rtype: str
    """
    try:
        with open(path, "r") as f:
            return f.readline().rstrip()
    except FileNotFoundError:
        return None


__all__ = [
    # sdboot module constants
    "DEFAULT_ROOT_PATH",
    "KERNEL_CONF_DIR",
    "SDBOOT_CONFIG_FILE",
    "DEFAULT_SDBOOT_CONFIG_PATH",
    "SDBOOT_CONFIG_MODE",
    "KERNEL_TRIES_PATH",
    "KERNEL_CMDLINE_PATH",
    "KERNEL_CMDLINE_LIB_PATH",
    "PROC_CMDLINE_PATH",
    "OS_RELEASE_PATH",
    "OS_RELEASE_LIB_PATH",
    "MACHINE_ID_PATH",
    "MODULES_PATH",
    "MODE_UKI",
    "MODE_BLS",
    "MODES",
    "ENV_MACHINE_ID",
    "ENV_BOOT_ROOT",
    # API Classes
    "SdbootConfig",
    # Path configuration
    "get_root_path",
    "set_root_path",
    "sys_path",
    "get_sdboot_config_path",
    "set_sdboot_config_path",
    # Persistent configuration
    "set_sdboot_config",
    "get_sdboot_config",
    # sdboot exception base class
    "SdbootError",
    # sdboot logger class (used by test suite)
    "SdbootLogger",
    # Debug logging
    "get_debug_mask",
    "set_debug_mask",
    "SDBOOT_LOG_DEBUG",
    "SDBOOT_LOG_INFO",
    "SDBOOT_LOG_WARN",
    "SDBOOT_LOG_ERROR",
    "SDBOOT_DEBUG_HOOK",
    "SDBOOT_DEBUG_ENTRY",
    "SDBOOT_DEBUG_BUILD",
    "SDBOOT_DEBUG_CONFIG",
    "SDBOOT_DEBUG_ALL",
    # Utility routines
    "blank_or_comment",
    "parse_name_value",
    "read_first_line",
]

# vim: set et ts=4 sw=4
