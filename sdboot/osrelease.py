# Copyright Red Hat
#
# sdboot/osrelease.py - os-release(5) support
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdboot.osrelease`` module reads operating system identification
data in os-release(5) format and resolves the human readable name used
to describe a kernel in log output and boot menus.
"""
from os.path import exists as path_exists
import logging

from sdboot import *

# Module logging configuration
_log = logging.getLogger(__name__)

_log_debug = _log.debug
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error

#: Candidate os-release files, in priority order.
OS_RELEASE_PATHS = [OS_RELEASE_PATH, OS_RELEASE_LIB_PATH]

#: Name format used when no os-release data is available.
FALLBACK_NAME_FORMAT = "Linux %s"


def parse_os_release(os_release):
    """Parse os-release(5) data into a dictionary.

    Lines that are blank, comments, or not in ``NAME=value`` form are
    skipped.

    :param os_release: an iterable of lines in os-release(5) format.
    :returns: a dictionary mapping os-release keys to values.
    :rtype: dict
    """
    release_data = {}
    for line in os_release:
        if blank_or_comment(line):
            continue
        try:
            name, value = parse_name_value(line)
        except ValueError as e:
            _log_debug("Skipping os-release line: %s", e)
            continue
        release_data[name] = value
    return release_data


def read_os_release(paths=None):
    """Read the first available os-release file.

    :param paths: a list of candidate paths, or ``None`` to use the
                  system defaults resolved against the root path.
    :returns: the parsed os-release data, or an empty dictionary if
              no candidate file exists.
    :rtype: dict
    """
    paths = paths or [sys_path(p) for p in OS_RELEASE_PATHS]
    for path in paths:
        if not path_exists(path):
            continue
        _log_debug("Reading os-release data from '%s'", path)
        with open(path, "r") as f:
            return parse_os_release(f)
    return {}


def os_pretty_name(version, paths=None):
    """Return the human readable name of the installed operating system.

    The ``PRETTY_NAME`` value of the first available os-release file is
    used; if there is none, ``"Linux <version>"`` is returned.

    :param version: the kernel version being installed.
    :param paths: optional candidate os-release paths.
    :rtype: str
    """
    release_data = read_os_release(paths=paths)
    pretty_name = release_data.get("PRETTY_NAME")
    if not pretty_name:
        return FALLBACK_NAME_FORMAT % version
    return pretty_name


__all__ = [
    "OS_RELEASE_PATHS",
    "parse_os_release",
    "read_os_release",
    "os_pretty_name",
]

# vim: set et ts=4 sw=4 :
