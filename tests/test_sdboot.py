# Copyright Red Hat
#
# tests/test_sdboot.py - sdboot module tests.
#
# This file is part of the sdboot project.
#
# SPDX-License-Identifier: GPL-2.0-only
import unittest
import logging
from os.path import join

import sdboot

from tests import *

log = logging.getLogger()


class SdbootTests(unittest.TestCase):
    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)
        reset_sandbox()

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)
        reset_sdboot()
        rm_sandbox()

    # Module tests
    def test_import(self):
        import sdboot

    def test_version(self):
        self.assertTrue(sdboot.__version__)

    # Helper routine tests

    def test_parse_name_value_default(self):
        # Test each allowed quoting style
        for nvp in ["n=v", "n='v'", 'n="v"', 'n = "v"', "n=v\n"]:
            with self.subTest(nvp=nvp):
                (name, value) = sdboot.parse_name_value(nvp)
                self.assertEqual(name, "n")
                self.assertEqual(value, "v")

    def test_parse_name_value_embedded_space(self):
        nvp = 'PRETTY_NAME="Fedora Linux 40 (Workstation Edition)"'
        (name, value) = sdboot.parse_name_value(nvp)
        self.assertEqual(name, "PRETTY_NAME")
        self.assertEqual(value, "Fedora Linux 40 (Workstation Edition)")

    def test_parse_name_value_empty_value(self):
        (name, value) = sdboot.parse_name_value("VARIANT=")
        self.assertEqual(name, "VARIANT")
        self.assertEqual(value, "")

    def test_parse_name_value_invalid(self):
        for nvp in ["noequals", "=value", "bad name=v", "n-ame=v"]:
            with self.subTest(nvp=nvp):
                with self.assertRaises(ValueError):
                    sdboot.parse_name_value(nvp)

    def test_blank_or_comment(self):
        self.assertTrue(sdboot.blank_or_comment(""))
        self.assertTrue(sdboot.blank_or_comment("   \n"))
        self.assertTrue(sdboot.blank_or_comment("# comment"))
        self.assertTrue(sdboot.blank_or_comment("   # comment"))
        self.assertFalse(sdboot.blank_or_comment("ID=fedora"))

    def test_read_first_line(self):
        path = join(SANDBOX_PATH, "first")
        with open(path, "w") as f:
            f.write("one  \ntwo\n")
        self.assertEqual(sdboot.read_first_line(path), "one")

    def test_read_first_line_missing(self):
        self.assertIsNone(sdboot.read_first_line(join(SANDBOX_PATH, "nope")))

    # Path configuration

    def test_set_root_path(self):
        sdboot.set_root_path(SANDBOX_PATH)
        self.assertEqual(sdboot.get_root_path(), SANDBOX_PATH)

    def test_set_root_path_relative(self):
        with self.assertRaises(ValueError):
            sdboot.set_root_path("tests/sandbox")

    def test_set_root_path_missing(self):
        with self.assertRaises(ValueError):
            sdboot.set_root_path(join(SANDBOX_PATH, "nonexistent"))

    def test_sys_path_default_root(self):
        self.assertEqual(sdboot.sys_path("/etc/kernel/tries"), "/etc/kernel/tries")

    def test_sys_path_sandbox_root(self):
        sdboot.set_root_path(SANDBOX_PATH)
        self.assertEqual(
            sdboot.sys_path("/etc/kernel/tries"),
            join(SANDBOX_PATH, "etc/kernel/tries")
        )

    def test_set_sdboot_config_path_relative(self):
        with self.assertRaises(ValueError):
            sdboot.set_sdboot_config_path("sdboot.conf")

    # Configuration object

    def test_sdboot_config_defaults(self):
        bc = sdboot.SdbootConfig()
        self.assertEqual(bc.mode, sdboot.MODE_UKI)
        self.assertEqual(bc.dracut, "dracut")
        self.assertFalse(bc.secureboot)
        self.assertFalse(bc.deregister_package)
        self.assertEqual(bc.package_format, "kernel-core-%s")

    def test_sdboot_config_bad_mode(self):
        with self.assertRaises(ValueError):
            sdboot.SdbootConfig(mode="grub")

    def test_sdboot_config_str(self):
        bc = sdboot.SdbootConfig(mode=sdboot.MODE_BLS)
        self.assertIn("[global]\nmode = bls\n", str(bc))
        self.assertIn("[remove]\n", str(bc))

    def test_sdboot_config_repr(self):
        bc = sdboot.SdbootConfig(dracut="/usr/bin/dracut")
        self.assertTrue(repr(bc).startswith('SdbootConfig(mode="uki", '))
        self.assertIn('dracut="/usr/bin/dracut"', repr(bc))

    def test_set_sdboot_config_bad_object(self):
        with self.assertRaises(TypeError):
            sdboot.set_sdboot_config(object())

    # Debug mask

    def test_set_debug_mask(self):
        sdboot.set_debug_mask(sdboot.SDBOOT_DEBUG_ALL)
        self.assertEqual(sdboot.get_debug_mask(), sdboot.SDBOOT_DEBUG_ALL)

    def test_set_debug_mask_bad_mask(self):
        with self.assertRaises(ValueError):
            sdboot.set_debug_mask(sdboot.SDBOOT_DEBUG_ALL + 1)
        with self.assertRaises(ValueError):
            sdboot.set_debug_mask(-1)

    def test_logger_set_debug_mask_bad_bits(self):
        logger = sdboot.SdbootLogger("sdboot.test")
        with self.assertRaises(ValueError):
            logger.set_debug_mask(sdboot.SDBOOT_DEBUG_ALL + 1)

    def test_logger_debug_masked(self):
        logger = sdboot.SdbootLogger("sdboot.test")
        logger.set_debug_mask(sdboot.SDBOOT_DEBUG_ENTRY)
        logger.setLevel(logging.DEBUG)
        with self.assertLogs(logger, level="DEBUG") as cm:
            sdboot.set_debug_mask(sdboot.SDBOOT_DEBUG_ENTRY)
            logger.debug_masked("shown")
            sdboot.set_debug_mask(sdboot.SDBOOT_DEBUG_HOOK)
            logger.debug_masked("hidden")
        self.assertEqual(len(cm.output), 1)
        self.assertIn("shown", cm.output[0])

# vim: set et ts=4 sw=4 :
