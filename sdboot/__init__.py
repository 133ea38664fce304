# Copyright Red Hat
#
# sdboot/__init__.py - sdboot package initialisation
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
"""This module provides classes and functions implementing a
``kernel-install(8)`` hook that boots Fedora via systemd-boot, either
with unified kernel images placed in ``EFI/Linux`` or with Boot Loader
Specification entries in ``loader/entries``.

The ``sdboot`` package contains global definitions, functions to
configure the sdboot environment, and logging infrastructure for the
package.

Individual sub-modules provide interfaces to the various components of
sdboot: persistent configuration, os-release and kernel command line
resolution, loader entry path handling, the ``dracut`` image builder,
package deregistration, the hook itself, and the ``sdboot`` command
line tool.
"""
from ._sdboot import *
from ._sdboot import __all__

__version__ = "1.0.0"
# vim: set et ts=4 sw=4 :
