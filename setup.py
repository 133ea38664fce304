#!/usr/bin/env python
from setuptools import setup

from sdboot import __version__ as sdboot_version

setup(
    name='sdboot',
    version=sdboot_version,
    description=("""systemd-boot kernel-install hook for Fedora."""),
    license="GPLv2",
    test_suite="tests",
    scripts=['bin/sdboot'],
    packages=['sdboot'],
    # Reference copy of the plugin that "sdboot configure" installs into
    # /etc/kernel/install.d under a mode specific name.
    data_files=[('share/sdboot/kernel-install', ['kernel-install/90-sdboot.install'])],
)


# vim: set et ts=4 sw=4 :
