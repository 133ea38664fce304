# Copyright Red Hat
#
# sdboot/rpm.py - sdboot package database integration
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdboot.rpm`` module removes the package record of a kernel
from the RPM database once its boot artifacts have been removed.

Deregistration is opt-in and best-effort: failures are logged and
never abort the removal of a kernel.
"""
from os import environ
from subprocess import run, CalledProcessError
from typing import Optional
import logging

from sdboot import *

# Module logging configuration
_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: The rpm command
_RPM = "rpm"

_CMD_ENV = {
    "LC_ALL": "C",
}


def _cmd_env():
    env = dict(environ)
    env.update(_CMD_ENV)
    return env


def kernel_package_name(version: str, package_format: Optional[str] = None) -> str:
    """Return the name of the package providing kernel ``version``.

    :param version: the kernel version.
    :param package_format: a format string containing ``%s``, or
                           ``None`` to use the configured format.
    :rtype: str
    """
    package_format = package_format or get_sdboot_config().package_format
    return package_format % version


def deregister_kernel(version: str, package_format: Optional[str] = None) -> bool:
    """Remove the package record for kernel ``version`` without running
    package scripts.

    :param version: the kernel version.
    :param package_format: an optional package name format.
    :returns: ``True`` if the record was removed or ``False`` otherwise.
    :rtype: bool
    """
    package = kernel_package_name(version, package_format=package_format)
    rpm_cmd_args = [_RPM, "-e", "--noscripts", package]
    try:
        run(rpm_cmd_args, env=_cmd_env(), capture_output=True, check=True)
    except FileNotFoundError:
        _log_warn("Cannot deregister %s: rpm not found", package)
        return False
    except CalledProcessError as err:
        stderr = err.stderr.decode("utf8", errors="replace").strip()
        _log_warn("Error calling rpm command: '%s': %s", " ".join(rpm_cmd_args), stderr)
        return False
    _log_info("Deregistered package %s", package)
    return True


__all__ = [
    "kernel_package_name",
    "deregister_kernel",
]

# vim: set et ts=4 sw=4 :
