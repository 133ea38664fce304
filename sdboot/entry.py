# Copyright Red Hat
#
# sdboot/entry.py - Loader entry and unified image paths
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdboot.entry`` module defines the functions used to locate the
artifacts produced for an installed kernel: unified kernel images under
``EFI/Linux`` and Boot Loader Specification entries under
``loader/entries`` on the boot root.

Artifact file names are built from the machine identifier, the kernel
version and, when boot counting is configured in ``/etc/kernel/tries``,
a ``+<tries>`` suffix:

    <boot_root>/EFI/Linux/<version>-<machine_id>[+<tries>].efi
    <boot_root>/loader/entries/<machine_id>-<version>[+<tries>].conf

Functions are provided to read the machine identifier and the tries
counter, to derive the boot root from a kernel-install entry directory,
to remove the artifacts of a kernel version, and to rewrite a BLS entry
so that it boots the unified image produced in place of the initramfs.
"""
from os.path import (
    basename,
    dirname,
    exists as path_exists,
    ismount,
    isabs,
    join as path_join,
    normpath,
)
from os import chmod, fdatasync, fdopen, listdir, makedirs, rename, unlink
from os import sep as path_sep
from tempfile import mkstemp
import logging
import re

from sdboot import *

#: The path to unified kernel images relative to the boot root.
EFI_LINUX_PATH = "EFI/Linux"

#: The path to the BLS boot entries directory relative to the boot root.
ENTRIES_PATH = "loader/entries"

#: The format used to construct unified image file names.
UKI_FORMAT = "%s-%s%s.efi"

#: The format used to construct BLS entry file names.
BLS_FORMAT = "%s-%s%s.conf"

#: The format used to construct the rescue image file name.
RESCUE_FORMAT = "0-rescue-%s.efi"

#: The format of the boot counting suffix.
TRIES_FORMAT = "+%d"

#: Boot counting suffix as rewritten by systemd-boot: ``+LEFT[-DONE]``.
TRIES_SUFFIX_PATTERN = r"(\+\d+(-\d+)?)?"

#: A valid machine identifier.
MACHINE_ID_PATTERN = re.compile(r"^[0-9a-f]{32}$")

#: The file mode with which rewritten BLS entries are created.
BOOT_ENTRY_MODE = 0o644

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_ENTRY)

_log_debug = _log.debug
_log_debug_entry = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


class SdbootEntryError(SdbootError):
    """sdboot exception indicating a problem reading entry state or
    creating entry paths.
    """

    @staticmethod
    def invalid_tries(path):
        return SdbootEntryError(f"{path} does not contain an integer.")

    @staticmethod
    def invalid_machine_id(machine_id):
        return SdbootEntryError(f"Invalid machine-id: '{machine_id}'")

    @staticmethod
    def missing_machine_id(path):
        return SdbootEntryError(f"Could not read machine-id from {path}")

    @staticmethod
    def invalid_entry_dir(entry_dir):
        return SdbootEntryError(f"Cannot derive boot root from entry directory '{entry_dir}'")

    @staticmethod
    def entry_dir(path):
        return SdbootEntryError(f"Could not create loader entry directory '{path}'.")

    @staticmethod
    def missing_entry(path):
        return SdbootEntryError(f"Loader entry '{path}' does not exist.")


def check_machine_id(machine_id):
    """Raise ``SdbootEntryError`` unless ``machine_id`` is a 32 character
    lower case hexadecimal string.
    """
    if not machine_id or not MACHINE_ID_PATTERN.match(machine_id):
        raise SdbootEntryError.invalid_machine_id(machine_id)


def read_machine_id(path=None):
    """Read the machine identifier from ``/etc/machine-id``.

    :param path: an optional alternate machine-id file.
    :returns: the machine identifier.
    :rtype: str
    :raises: ``SdbootEntryError`` if the file is missing or invalid.
    """
    path = path or sys_path(MACHINE_ID_PATH)
    machine_id = read_first_line(path)
    if machine_id is None:
        raise SdbootEntryError.missing_machine_id(path)
    machine_id = machine_id.strip()
    check_machine_id(machine_id)
    return machine_id


def read_tries(path=None):
    """Read the boot counting value from ``/etc/kernel/tries``.

    The value is returned as an integer, so leading zeros are dropped:
    a file containing ``007`` gives the entry suffix ``+7``. systemd-boot
    reads both forms as the same counter.

    :param path: an optional alternate tries file.
    :returns: the number of tries, or ``None`` if boot counting is not
              configured.
    :rtype: int
    :raises: ``SdbootEntryError`` if the file exists but does not
             contain a non-negative integer.
    """
    path = path or sys_path(KERNEL_TRIES_PATH)
    value = read_first_line(path)
    if value is None:
        return None
    value = value.strip()
    if not value.isascii() or not value.isdigit():
        raise SdbootEntryError.invalid_tries(path)
    _log_debug_entry("Read tries=%s from %s", value, path)
    return int(value)


def _tries_suffix(tries):
    return TRIES_FORMAT % tries if tries is not None else ""


def efi_linux_path(boot_root):
    """Return the unified kernel image directory on ``boot_root``."""
    return path_join(boot_root, EFI_LINUX_PATH)


def loader_entries_path(boot_root):
    """Return the BLS entry directory on ``boot_root``."""
    return path_join(boot_root, ENTRIES_PATH)


def uki_path(boot_root, machine_id, version, tries=None):
    """Return the unified kernel image path for ``version``.

    :param boot_root: the boot root directory.
    :param machine_id: the machine identifier.
    :param version: the kernel version.
    :param tries: the boot counting value, or ``None``.
    :rtype: str
    """
    file_name = UKI_FORMAT % (version, machine_id, _tries_suffix(tries))
    return path_join(efi_linux_path(boot_root), file_name)


def bls_path(boot_root, machine_id, version, tries=None):
    """Return the BLS entry path for ``version``.

    :param boot_root: the boot root directory.
    :param machine_id: the machine identifier.
    :param version: the kernel version.
    :param tries: the boot counting value, or ``None``.
    :rtype: str
    """
    file_name = BLS_FORMAT % (machine_id, version, _tries_suffix(tries))
    return path_join(loader_entries_path(boot_root), file_name)


def loader_entry_path(mode, boot_root, machine_id, version, tries=None):
    """Return the artifact path for ``version`` in hook mode ``mode``.

    :param mode: ``MODE_UKI`` or ``MODE_BLS``.
    :rtype: str
    :raises: ``ValueError`` if ``mode`` is unknown.
    """
    if mode == MODE_UKI:
        return uki_path(boot_root, machine_id, version, tries=tries)
    if mode == MODE_BLS:
        return bls_path(boot_root, machine_id, version, tries=tries)
    raise ValueError("Unknown sdboot mode: %s" % mode)


def rescue_image_path(boot_root, machine_id):
    """Return the rescue unified kernel image path on ``boot_root``."""
    return path_join(efi_linux_path(boot_root), RESCUE_FORMAT % machine_id)


def boot_root_from_entry_dir(entry_dir, machine_id, version):
    """Derive the boot root from a kernel-install entry directory.

    The entry directory has the form ``<boot_root>/<machine_id>/<version>``:
    the two trailing components must match ``machine_id`` and ``version``
    and are removed.

    :param entry_dir: the absolute kernel-install entry directory.
    :param machine_id: the machine identifier.
    :param version: the kernel version.
    :returns: the boot root directory.
    :rtype: str
    :raises: ``SdbootEntryError`` if ``entry_dir`` does not end with
             ``<machine_id>/<version>``.
    """
    if not entry_dir or not isabs(entry_dir):
        raise SdbootEntryError.invalid_entry_dir(entry_dir)
    parts = normpath(entry_dir).split(path_sep)
    if len(parts) < 3 or parts[-2:] != [machine_id, version]:
        raise SdbootEntryError.invalid_entry_dir(entry_dir)
    boot_root = path_sep.join(parts[:-2]) or path_sep
    _log_debug_entry("Derived boot root %s from %s", boot_root, entry_dir)
    return boot_root


def find_mount_point(path):
    """Return the mount point of the file system containing ``path``.

    :param path: an absolute path.
    :rtype: str
    """
    path = normpath(path)
    while not ismount(path):
        parent = dirname(path)
        if parent == path:
            break
        path = parent
    return path


def make_entry_dir(entry_path):
    """Create the parent directory of ``entry_path`` if it does not
    already exist.

    :raises: ``SdbootEntryError`` naming the directory on failure.
    """
    entry_dir = dirname(entry_path)
    try:
        makedirs(entry_dir, exist_ok=True)
    except OSError as e:
        _log_error("Error creating %s: %s", entry_dir, e)
        raise SdbootEntryError.entry_dir(entry_dir) from e
    return entry_dir


def _artifact_patterns(machine_id, version):
    uki = "^%s-%s%s\\.efi$" % (
        re.escape(version),
        re.escape(machine_id),
        TRIES_SUFFIX_PATTERN,
    )
    bls = "^%s-%s%s\\.conf$" % (
        re.escape(machine_id),
        re.escape(version),
        TRIES_SUFFIX_PATTERN,
    )
    return [re.compile(uki), re.compile(bls)]


def find_artifacts(boot_root, machine_id, version):
    """Return the paths of all existing artifacts for ``version``.

    Both unified images and BLS entries are returned, with or without
    a boot counting suffix. Artifacts of other kernel versions or other
    machine identifiers never match.

    :rtype: list
    """
    (uki_re, bls_re) = _artifact_patterns(machine_id, version)
    found = []
    for entries_dir, pattern in [
        (efi_linux_path(boot_root), uki_re),
        (loader_entries_path(boot_root), bls_re),
    ]:
        try:
            names = listdir(entries_dir)
        except FileNotFoundError:
            continue
        found += [path_join(entries_dir, n) for n in sorted(names) if pattern.match(n)]
    return found


def remove_artifacts(boot_root, machine_id, version):
    """Remove all artifacts for ``version`` from ``boot_root``.

    Missing files are not an error.

    :returns: the list of paths removed.
    :rtype: list
    """
    removed = []
    for path in find_artifacts(boot_root, machine_id, version):
        try:
            unlink(path)
        except FileNotFoundError:
            continue
        _log_info("Removed %s", path)
        removed.append(path)
    return removed


def _rewrite_bls_line(line):
    if line.startswith("initrd"):
        return None
    if line.startswith("linux") and line.rstrip("\n").endswith("linux"):
        return line.rstrip("\n")[: -len("linux")] + "initrd\n"
    return line


def rewrite_bls_entry(entry_path, boot_root, machine_id, version):
    """Rewrite a BLS entry to boot a unified image.

    When dracut is configured to produce unified images the file
    installed as the entry's initramfs is a complete EFI executable:
    ``initrd`` lines are dropped, a ``linux`` line pointing at the
    separate kernel image is retargeted to the unified image, and the
    now unused kernel image in the entry directory is removed.

    :param entry_path: the BLS entry to rewrite.
    :param boot_root: the boot root directory.
    :param machine_id: the machine identifier.
    :param version: the kernel version.
    :raises: ``SdbootEntryError`` if the entry does not exist, or
             ``OSError`` if writing the new entry fails.
    """
    if not path_exists(entry_path):
        raise SdbootEntryError.missing_entry(entry_path)

    with open(entry_path, "r") as f:
        lines = [_rewrite_bls_line(line) for line in f]

    (tmp_fd, tmp_path) = mkstemp(prefix="sdboot", dir=dirname(entry_path))
    try:
        with fdopen(tmp_fd, "w") as f:
            f.writelines([line for line in lines if line is not None])
            f.flush()
            fdatasync(f.fileno())
        rename(tmp_path, entry_path)
        chmod(entry_path, BOOT_ENTRY_MODE)
    except Exception as e:
        _log_error("Error writing entry file %s: %s", entry_path, e)
        try:
            unlink(tmp_path)
        except Exception:
            _log_error("Error unlinking temporary path %s", tmp_path)
        raise e
    _log_info("Rewrote entry %s", basename(entry_path))

    kernel_path = path_join(boot_root, machine_id, version, "linux")
    try:
        unlink(kernel_path)
        _log_debug_entry("Removed kernel image %s", kernel_path)
    except FileNotFoundError:
        pass


__all__ = [
    # Module constants
    "EFI_LINUX_PATH",
    "ENTRIES_PATH",
    "UKI_FORMAT",
    "BLS_FORMAT",
    "RESCUE_FORMAT",
    "BOOT_ENTRY_MODE",
    # Exception class
    "SdbootEntryError",
    # State readers
    "check_machine_id",
    "read_machine_id",
    "read_tries",
    # Path construction
    "efi_linux_path",
    "loader_entries_path",
    "uki_path",
    "bls_path",
    "loader_entry_path",
    "rescue_image_path",
    "boot_root_from_entry_dir",
    "find_mount_point",
    "make_entry_dir",
    # Artifact handling
    "find_artifacts",
    "remove_artifacts",
    "rewrite_bls_entry",
]

# vim: set et ts=4 sw=4 :
