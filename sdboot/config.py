# Copyright Red Hat
#
# sdboot/config.py - sdboot persistent configuration
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdboot.config`` module defines classes, constants and functions
for reading and writing persistent (on-disk) configuration for the sdboot
library and tools.

Users of the module can load and write configuration data, and obtain
the values of configuration keys defined in the sdboot configuration
file. A missing configuration file is not an error: the built-in
defaults of ``SdbootConfig`` remain active.
"""
from os.path import dirname, exists as path_exists

from os import fdopen, rename, chmod, fdatasync, unlink
from configparser import ConfigParser, ParsingError
from tempfile import mkstemp
import logging

from sdboot import *


class SdbootConfigError(SdbootError):
    """Base class for sdboot configuration errors."""

    pass


# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_CONFIG)

_log_debug = _log.debug
_log_debug_config = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#
# Constants for configuration sections and options: to add a new option,
# create a new _CFG_* constant giving the name of the option and add a
# hook to _read_sdboot_config() to set the value when read.
#
_CFG_SECT_GLOBAL = "global"
_CFG_MODE = "mode"
_CFG_SECT_DRACUT = "dracut"
_CFG_DRACUT = "dracut"
_CFG_SECUREBOOT = "secureboot"
_CFG_SECUREBOOT_CERT = "secureboot_cert"
_CFG_SECUREBOOT_KEY = "secureboot_key"
_CFG_SECT_REMOVE = "remove"
_CFG_DEREGISTER = "deregister_package"
_CFG_PACKAGE_FORMAT = "package_format"

_TRUES = ["True", "true", "Yes", "yes", "1"]


def _read_sdboot_config(path=None):
    """Read sdboot persistent configuration values from the defined path
    and return them as a ``SdbootConfig`` object.

    :param path: the configuration file to read, or None to read the
                 currently configured config file path.

    :rtype: SdbootConfig
    """
    path = path or sys_path(get_sdboot_config_path())
    bc = SdbootConfig()

    if not path_exists(path):
        _log_debug("no sdboot configuration at '%s': using defaults", path)
        bc._cfg = None
        return bc

    _log_debug("reading sdboot configuration from '%s'", path)
    cfg = ConfigParser(interpolation=None)
    try:
        cfg.read(path)
    except ParsingError as e:
        _log_error("Failed to parse configuration file '%s': %s", path, e)
        raise SdbootConfigError("Failed to parse configuration file '%s'" % path)

    if cfg.has_section(_CFG_SECT_GLOBAL):
        if cfg.has_option(_CFG_SECT_GLOBAL, _CFG_MODE):
            _log_debug_config("Found global.mode")
            mode = cfg.get(_CFG_SECT_GLOBAL, _CFG_MODE).strip()
            if mode not in MODES:
                raise SdbootConfigError(
                    "Invalid mode '%s' in %s (expected one of: %s)"
                    % (mode, path, ", ".join(MODES))
                )
            bc.mode = mode

    if cfg.has_section(_CFG_SECT_DRACUT):
        if cfg.has_option(_CFG_SECT_DRACUT, _CFG_DRACUT):
            _log_debug_config("Found dracut.dracut")
            bc.dracut = cfg.get(_CFG_SECT_DRACUT, _CFG_DRACUT)

        if cfg.has_option(_CFG_SECT_DRACUT, _CFG_SECUREBOOT):
            _log_debug_config("Found dracut.secureboot")
            enable = cfg.get(_CFG_SECT_DRACUT, _CFG_SECUREBOOT)
            bc.secureboot = any([t for t in _TRUES if t in enable])

        if cfg.has_option(_CFG_SECT_DRACUT, _CFG_SECUREBOOT_CERT):
            bc.secureboot_cert = cfg.get(_CFG_SECT_DRACUT, _CFG_SECUREBOOT_CERT)

        if cfg.has_option(_CFG_SECT_DRACUT, _CFG_SECUREBOOT_KEY):
            bc.secureboot_key = cfg.get(_CFG_SECT_DRACUT, _CFG_SECUREBOOT_KEY)

    if cfg.has_section(_CFG_SECT_REMOVE):
        if cfg.has_option(_CFG_SECT_REMOVE, _CFG_DEREGISTER):
            _log_debug_config("Found remove.deregister_package")
            enable = cfg.get(_CFG_SECT_REMOVE, _CFG_DEREGISTER)
            bc.deregister_package = any([t for t in _TRUES if t in enable])

        if cfg.has_option(_CFG_SECT_REMOVE, _CFG_PACKAGE_FORMAT):
            fmt = cfg.get(_CFG_SECT_REMOVE, _CFG_PACKAGE_FORMAT)
            if "%s" not in fmt:
                raise SdbootConfigError(
                    "Package format '%s' in %s does not contain '%%s'" % (fmt, path)
                )
            bc.package_format = fmt

    _log_debug("read configuration: %s", repr(bc))
    bc._cfg = cfg
    return bc


def load_sdboot_config(path=None):
    """Load sdboot persistent configuration values from the defined path
    and make the them the active configuration.

    :param path: the configuration file to read, or None to read the
                 currently configured config file path

    :rtype: SdbootConfig
    """
    bc = _read_sdboot_config(path=path)
    set_sdboot_config(bc)
    return bc


def _sync_config(bc, cfg):
    """Sync the configuration values of ``SdbootConfig`` object ``bc`` to
    the ``ConfigParser`` ``cfg``.
    """

    def yes_no(value):
        if value:
            return "yes"
        return "no"

    def attr_has_value(obj, attr):
        return hasattr(obj, attr) and getattr(obj, attr) is not None

    for section in (_CFG_SECT_GLOBAL, _CFG_SECT_DRACUT, _CFG_SECT_REMOVE):
        if not cfg.has_section(section):
            cfg.add_section(section)

    if attr_has_value(bc, "mode"):
        cfg.set(_CFG_SECT_GLOBAL, _CFG_MODE, bc.mode)
    if attr_has_value(bc, "dracut"):
        cfg.set(_CFG_SECT_DRACUT, _CFG_DRACUT, bc.dracut)
    if attr_has_value(bc, "secureboot"):
        cfg.set(_CFG_SECT_DRACUT, _CFG_SECUREBOOT, yes_no(bc.secureboot))
    if attr_has_value(bc, "secureboot_cert"):
        cfg.set(_CFG_SECT_DRACUT, _CFG_SECUREBOOT_CERT, bc.secureboot_cert)
    if attr_has_value(bc, "secureboot_key"):
        cfg.set(_CFG_SECT_DRACUT, _CFG_SECUREBOOT_KEY, bc.secureboot_key)
    if attr_has_value(bc, "deregister_package"):
        cfg.set(_CFG_SECT_REMOVE, _CFG_DEREGISTER, yes_no(bc.deregister_package))
    if attr_has_value(bc, "package_format"):
        cfg.set(_CFG_SECT_REMOVE, _CFG_PACKAGE_FORMAT, bc.package_format)


def write_sdboot_config(config=None, path=None):
    """Write sdboot configuration to disk.

    :param config: the configuration values to write, or None to
                   write the current configuration
    :param path: the configuration file to write, or None to write
                 the currently configured config file path

    :rtype: None
    """
    path = path or sys_path(get_sdboot_config_path())
    cfg_dir = dirname(path)
    (tmp_fd, tmp_path) = mkstemp(prefix="sdboot", dir=cfg_dir)

    config = config or get_sdboot_config()

    cfg = getattr(config, "_cfg", None) or ConfigParser(interpolation=None)
    _sync_config(config, cfg)
    config._cfg = cfg

    try:
        with fdopen(tmp_fd, "w") as f_tmp:
            cfg.write(f_tmp)
            f_tmp.flush()
            fdatasync(f_tmp.fileno())
        rename(tmp_path, path)
        chmod(path, SDBOOT_CONFIG_MODE)
    except Exception as e:
        _log_error("Error writing configuration file %s: %s", path, e)
        try:
            unlink(tmp_path)
        except Exception:
            _log_error("Error unlinking temporary path %s", tmp_path)
        raise e
    _log_debug("wrote configuration to '%s'", path)


__all__ = [
    "SdbootConfigError",
    # Configuration file handling
    "load_sdboot_config",
    "write_sdboot_config",
]

# vim: set et ts=4 sw=4 :
