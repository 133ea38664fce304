# Copyright Red Hat
#
# sdboot/dracut.py - sdboot dracut image builder integration
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""The ``sdboot.dracut`` module contains the functions used to run the
``dracut`` initramfs builder to produce unified kernel images, and to
write the dracut and kernel-install configuration that sdboot relies on.

Images are written by ``dracut`` at their final path. Any image already
at that path is set aside for the duration of the build so that a failed
build restores it and leaves no partial file behind.
"""
from os import chmod, close, fdopen, makedirs, readlink, rename, symlink, unlink, fdatasync
from os.path import dirname, exists, getsize, isdir, isfile, islink, lexists
from os.path import join as path_join
from shutil import copy2
from subprocess import run, DEVNULL
from tempfile import mkstemp
from typing import List, Optional
import logging

from sdboot import *
from sdboot.cmdline import join_options, running_kernel_options
from sdboot.entry import rescue_image_path

#: The file mode for installed images.
BOOT_IMAGE_MODE = 0o644

#: The sdboot dracut configuration drop-in.
DRACUT_CONF_PATH = "/etc/dracut.conf.d/sdboot.conf"

#: The kernel-install configuration file.
INSTALL_CONF_PATH = "/etc/kernel/install.conf"

#: The suffix of the saved copy of an existing kernel-install configuration.
INSTALL_CONF_BACKUP_SUFFIX = ".original"

#: The administrator kernel-install plugin directory.
INSTALL_D_PATH = "/etc/kernel/install.d"

#: The name under which the sdboot plugin is installed for each mode.
PLUGIN_NAMES = {
    MODE_UKI: "90-loaderentry.install",
    MODE_BLS: "95-use-unified-images.install",
}

#: The stock kernel-install plugins disabled in each mode.
MASKED_PLUGINS = {
    MODE_UKI: ["50-dracut.install", "51-dracut-rescue.install", "92-crashkernel.install"],
    MODE_BLS: ["51-dracut-rescue.install", "92-crashkernel.install"],
}

#: The kernel-install plugin that runs the sdboot hook.
PLUGIN_SCRIPT = """#!/bin/sh
# kernel-install plugin installed by sdboot configure
exec sdboot hook "$@"
"""

#: The file mode for installed plugins.
PLUGIN_MODE = 0o755

#: The target of kernel-install plugin masks.
DEVNULL_PATH = "/dev/null"

#: Extra dracut arguments used to build a rescue image.
RESCUE_ARGS = ["--no-hostonly", "-a", "rescue"]

# Module logging configuration
_log = logging.getLogger(__name__)
_log.set_debug_mask(SDBOOT_DEBUG_BUILD)

_log_debug = _log.debug
_log_debug_build = _log.debug_masked
_log_info = _log.info
_log_warn = _log.warning
_log_error = _log.error


class SdbootBuildError(SdbootError):
    """sdboot exception indicating that the image builder could not
    be run.
    """

    pass


def dracut_command(
    dracut: str,
    options: List[str],
    output: str,
    version: str,
    no_image: bool = False,
    extra_args: Optional[List[str]] = None,
) -> List[str]:
    """Return the dracut argument vector for building a unified image.

    :param dracut: the dracut executable.
    :param options: the kernel command line options to embed.
    :param output: the path of the unified image to write.
    :param version: the kernel version to build for.
    :param no_image: pass ``--noimageifnotneeded`` to dracut.
    :param extra_args: additional dracut arguments.
    :rtype: list
    """
    cmd = [dracut, "--kernel-cmdline", join_options(options), "-f"]
    if no_image:
        cmd.append("--noimageifnotneeded")
    cmd += extra_args or []
    cmd += ["--uefi", output, version]
    return cmd


def _run_dracut(cmd: List[str]) -> int:
    _log_debug_build("Calling dracut: '%s'", " ".join(cmd))
    try:
        proc = run(cmd, stdin=DEVNULL, check=False)
    except FileNotFoundError as err:
        raise SdbootBuildError(f"Image builder not found: {cmd[0]}") from err
    return proc.returncode


def _discard(path: str):
    try:
        unlink(path)
    except FileNotFoundError:
        pass


def build_image(
    output: str,
    version: str,
    options: List[str],
    no_image: bool = False,
    extra_args: Optional[List[str]] = None,
    dracut: Optional[str] = None,
) -> int:
    """Build a unified kernel image for ``version`` at ``output``.

    dracut writes directly to ``output``. An existing image at that
    path is moved aside first and put back if the build fails or if
    dracut decides that no image is needed.

    :param output: the path of the unified image to write.
    :param version: the kernel version to build for.
    :param options: the kernel command line options to embed.
    :param no_image: allow dracut to skip building an unneeded image.
    :param extra_args: additional dracut arguments.
    :param dracut: the dracut executable, or ``None`` to use the
                   configured value.
    :returns: the dracut exit status.
    :rtype: int
    :raises: ``SdbootBuildError`` if dracut cannot be executed or the
             image directory does not exist.
    """
    dracut = dracut or get_sdboot_config().dracut
    if not isdir(dirname(output)):
        raise SdbootBuildError(f"Image directory does not exist: {dirname(output)}")

    backup_path = None
    if exists(output):
        (tmp_fd, backup_path) = mkstemp(prefix=".sdboot", suffix=".bak", dir=dirname(output))
        close(tmp_fd)
        rename(output, backup_path)
        _log_debug_build("Moved %s to %s", output, backup_path)

    installed = False
    try:
        cmd = dracut_command(
            dracut, options, output, version, no_image=no_image, extra_args=extra_args
        )
        status = _run_dracut(cmd)
        if status != 0:
            _log_error("dracut failed for %s with status %d", version, status)
            return status
        if not exists(output) or not getsize(output):
            _log_info("dracut did not build an image for %s", version)
            return 0
        chmod(output, BOOT_IMAGE_MODE)
        installed = True
        _log_info("Installed %s", output)
        return 0
    finally:
        if installed:
            if backup_path:
                _discard(backup_path)
        else:
            _discard(output)
            if backup_path:
                rename(backup_path, output)


def build_rescue_image(
    boot_root: str, machine_id: str, version: str, options: List[str]
) -> int:
    """Build a generic rescue unified image for ``version``.

    :returns: the dracut exit status.
    :rtype: int
    """
    output = rescue_image_path(boot_root, machine_id)
    return build_image(output, version, options, extra_args=RESCUE_ARGS)


def dracut_conf(config=None) -> str:
    """Return the dracut configuration drop-in for ``config``.

    :param config: a ``SdbootConfig``, or ``None`` for the active
                   configuration.
    :rtype: str
    """
    config = config or get_sdboot_config()
    conf = 'uefi="yes"\n'
    if config.secureboot:
        conf += 'uefi_secureboot_cert="%s"\n' % config.secureboot_cert
        conf += 'uefi_secureboot_key="%s"\n' % config.secureboot_key
    conf += 'dracut_rescue_image="no"\n'
    conf += 'hostonly="yes"\n'
    return conf


def _write_conf(path: str, data: str, mode: int = SDBOOT_CONFIG_MODE):
    (tmp_fd, tmp_path) = mkstemp(prefix="sdboot", dir=dirname(path))
    try:
        with fdopen(tmp_fd, "w") as f:
            f.write(data)
            f.flush()
            fdatasync(f.fileno())
        rename(tmp_path, path)
        chmod(path, mode)
    except Exception as e:
        _log_error("Error writing configuration file %s: %s", path, e)
        try:
            unlink(tmp_path)
        except Exception:
            _log_error("Error unlinking temporary path %s", tmp_path)
        raise e
    _log_info("Wrote %s", path)


def write_dracut_conf(config=None, path: Optional[str] = None):
    """Write the sdboot dracut configuration drop-in."""
    _write_conf(path or sys_path(DRACUT_CONF_PATH), dracut_conf(config))


def write_install_conf(path: Optional[str] = None):
    """Configure kernel-install to use the BLS layout.

    An existing ``install.conf`` that has not been backed up before is
    copied to ``install.conf.original`` first.
    """
    path = path or sys_path(INSTALL_CONF_PATH)
    backup = path + INSTALL_CONF_BACKUP_SUFFIX
    if lexists(path) and not lexists(backup):
        copy2(path, backup)
        _log_info("Saved %s as %s", path, backup)
    _write_conf(path, "layout=bls\n")


def seed_kernel_cmdline(path: Optional[str] = None) -> bool:
    """Write ``/etc/kernel/cmdline`` from the running kernel's command
    line if the file does not already exist.

    :returns: ``True`` if the file was written.
    :rtype: bool
    """
    path = path or sys_path(KERNEL_CMDLINE_PATH)
    if lexists(path):
        _log_debug("Keeping existing %s", path)
        return False
    _write_conf(path, join_options(running_kernel_options()) + "\n")
    return True


def _mask_plugin(path: str):
    if islink(path):
        if readlink(path) == DEVNULL_PATH:
            return
        unlink(path)
    elif lexists(path):
        _log_warn("Not masking %s: file exists", path)
        return
    symlink(DEVNULL_PATH, path)
    _log_info("Masked %s", path)


def _is_sdboot_plugin(path: str) -> bool:
    if islink(path) or not isfile(path):
        return False
    with open(path, "r") as f:
        return f.read() == PLUGIN_SCRIPT


def configure_kernel_install(mode: str, install_d: Optional[str] = None):
    """Install the sdboot kernel-install plugin for ``mode`` and mask
    the stock plugins that it replaces.

    Plugins are installed into ``/etc/kernel/install.d``, where a file
    overrides the plugin of the same name in ``/usr/lib/kernel/install.d``
    and a symbolic link to ``/dev/null`` disables it. The plugin and
    the ``50-dracut.install`` mask left by a previous configuration for
    another mode are removed.

    :param mode: the hook mode, ``MODE_UKI`` or ``MODE_BLS``.
    :param install_d: an optional alternate plugin directory.
    """
    if mode not in MODES:
        raise ValueError("Unknown sdboot mode: %s" % mode)
    install_d = install_d or sys_path(INSTALL_D_PATH)
    makedirs(install_d, exist_ok=True)

    for other_mode, name in PLUGIN_NAMES.items():
        other = path_join(install_d, name)
        if other_mode != mode and _is_sdboot_plugin(other):
            unlink(other)
            _log_info("Removed %s", other)

    for name in set(MASKED_PLUGINS[MODE_UKI]) - set(MASKED_PLUGINS[mode]):
        stale = path_join(install_d, name)
        if islink(stale) and readlink(stale) == DEVNULL_PATH:
            unlink(stale)
            _log_info("Unmasked %s", stale)

    plugin = path_join(install_d, PLUGIN_NAMES[mode])
    _write_conf(plugin, PLUGIN_SCRIPT, mode=PLUGIN_MODE)

    for name in MASKED_PLUGINS[mode]:
        _mask_plugin(path_join(install_d, name))


__all__ = [
    "BOOT_IMAGE_MODE",
    "DRACUT_CONF_PATH",
    "INSTALL_CONF_BACKUP_SUFFIX",
    "INSTALL_CONF_PATH",
    "INSTALL_D_PATH",
    "MASKED_PLUGINS",
    "PLUGIN_MODE",
    "PLUGIN_NAMES",
    "PLUGIN_SCRIPT",
    "RESCUE_ARGS",
    "SdbootBuildError",
    "dracut_command",
    "build_image",
    "build_rescue_image",
    "dracut_conf",
    "write_dracut_conf",
    "write_install_conf",
    "seed_kernel_cmdline",
    "configure_kernel_install",
]

# vim: set et ts=4 sw=4 :
