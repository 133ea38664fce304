# Copyright Red Hat
#
# tests/__init__.py - sdboot test package initialisation
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
from os.path import abspath, dirname, join
from os import chmod, environ, listdir, makedirs
import logging
import shutil
import errno

import sdboot

log = logging.getLogger()
log.setLevel(logging.DEBUG)
formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
file_handler = logging.FileHandler("test.log")
file_handler.setFormatter(formatter)
log.addHandler(file_handler)

# Root of the testing directory
TESTS_PATH = dirname(abspath(__file__))

# Location of the temporary sandbox for test data
SANDBOX_PATH = join(TESTS_PATH, "sandbox")

# Location of the mock binaries used by the test suite
MOCK_BIN_PATH = join(TESTS_PATH, "bin")

# Log of calls made to mock binaries
MOCK_LOG = join(SANDBOX_PATH, "mock.log")

# A valid machine identifier for tests
MACHINE_ID = "abc123def4567890abc123def4567890"

# A Fedora kernel version for tests
KERNEL_VERSION = "6.9.1-200.fc40.x86_64"

# Environment variables consumed by the mock binaries
_MOCK_ENV = [
    "SDBOOT_MOCK_LOG",
    "DRACUT_MOCK_STATUS",
    "DRACUT_MOCK_NO_IMAGE",
    "RPM_MOCK_STATUS",
    "KI_MOCK_FAIL_VERSION",
    sdboot.ENV_MACHINE_ID,
    sdboot.ENV_BOOT_ROOT,
]

# Test sandbox functions

def rm_sandbox():
    """Remove the test sandbox at SANDBOX_PATH.
    """
    try:
        shutil.rmtree(SANDBOX_PATH)
    except OSError as e:
        if e.errno != errno.ENOENT:
            raise


def mk_sandbox():
    """Create a new test sandbox at SANDBOX_PATH.
    """
    makedirs(SANDBOX_PATH)


def reset_sandbox():
    """Reset the test sandbox at SANDBOX_PATH by removing it and
        re-creating the directory.
    """
    rm_sandbox()
    mk_sandbox()


def reset_sdboot():
    """Reset sdboot module state to the defaults.
    """
    sdboot.set_root_path(sdboot.DEFAULT_ROOT_PATH)
    sdboot.set_sdboot_config(sdboot.SdbootConfig())
    sdboot.set_sdboot_config_path(sdboot.DEFAULT_SDBOOT_CONFIG_PATH)
    sdboot.set_debug_mask(0)


def set_mock_path():
    """Set the PATH environment variable to tests/bin to include mock
        binaries used in the sdboot test suite, and direct the mock
        call log to MOCK_LOG.
    """
    for name in listdir(MOCK_BIN_PATH):
        chmod(join(MOCK_BIN_PATH, name), 0o755)
    os_path = environ['PATH']
    if not os_path.startswith(MOCK_BIN_PATH + ":"):
        environ['PATH'] = MOCK_BIN_PATH + ":" + os_path
    environ['SDBOOT_MOCK_LOG'] = MOCK_LOG


def clear_mock_env():
    """Remove mock control variables from the environment.
    """
    for name in _MOCK_ENV:
        environ.pop(name, None)


def mock_calls(name=None):
    """Return the calls recorded by the mock binaries as a list of
        argument lists, each starting with the binary name. If
        ``name`` is given only calls to that binary are returned.
    """
    calls = []
    try:
        with open(MOCK_LOG, "r") as f:
            lines = f.read().splitlines()
    except FileNotFoundError:
        return calls
    call = []
    for line in lines:
        if line == "END":
            calls.append(call)
            call = []
        else:
            call.append(line)
    if name:
        calls = [c for c in calls if c[0] == name]
    return calls


def write_sys_file(root, path, data):
    """Write ``data`` to the system file ``path`` below ``root``.
    """
    full_path = join(root, path.lstrip("/"))
    makedirs(dirname(full_path), exist_ok=True)
    with open(full_path, "w") as f:
        f.write(data)
    return full_path


def make_sysroot(root, machine_id=MACHINE_ID, cmdline=None, proc_cmdline=None,
                 tries=None, os_release=None):
    """Populate a fake system root at ``root`` with the files read by
        the hook. Arguments left as ``None`` leave the file absent,
        except ``/etc/machine-id`` and ``/proc/cmdline``.
    """
    makedirs(root, exist_ok=True)
    write_sys_file(root, sdboot.MACHINE_ID_PATH, machine_id + "\n")
    if proc_cmdline is None:
        proc_cmdline = ("BOOT_IMAGE=(hd0,gpt2)/vmlinuz-6.8.5-301.fc40.x86_64 "
                        "root=UUID=4b1d2d3a-0f9e-4c57-8a55-5e2f1d9c7b10 ro rhgb quiet")
    write_sys_file(root, sdboot.PROC_CMDLINE_PATH, proc_cmdline + "\n")
    if cmdline is not None:
        write_sys_file(root, sdboot.KERNEL_CMDLINE_PATH, cmdline + "\n")
    if tries is not None:
        write_sys_file(root, sdboot.KERNEL_TRIES_PATH, tries + "\n")
    if os_release is not None:
        write_sys_file(root, sdboot.OS_RELEASE_PATH, os_release)
    return root


__all__ = [
    'TESTS_PATH', 'SANDBOX_PATH', 'MOCK_BIN_PATH', 'MOCK_LOG',
    'MACHINE_ID', 'KERNEL_VERSION',
    'rm_sandbox', 'mk_sandbox', 'reset_sandbox', 'reset_sdboot',
    'set_mock_path', 'clear_mock_env', 'mock_calls',
    'write_sys_file', 'make_sysroot',
]

# vim: set et ts=4 sw=4 :
