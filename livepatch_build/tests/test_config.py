#!/usr/bin/env python3
"""
Tests for kernel configuration parsing, validation and pipeline settings.
"""

import json
import unittest
import tempfile
import shutil
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from livepatch_build.errors import ConfigurationError, PrerequisiteMissingError
from livepatch_build.config.kernel_config import KernelConfigParser
from livepatch_build.config.validator import KernelConfigValidator, ValidationLevel
from livepatch_build.config.settings import PipelineSettings, load_settings, save_settings

SAMPLE_CONFIG = """#
# Automatically generated file; DO NOT EDIT.
#
CONFIG_DEBUG_INFO=y
CONFIG_LIVEPATCH=y
CONFIG_PARAVIRT=y
CONFIG_MODULES=m
# CONFIG_DEBUG_INFO_SPLIT is not set
CONFIG_LOCALVERSION="-livepatch"
"""


class TestKernelConfigParser(unittest.TestCase):
    """Test cases for KernelConfigParser."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.config_file = Path(self.test_dir) / ".config"
        self.config_file.write_text(SAMPLE_CONFIG)
        self.parser = KernelConfigParser()

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def test_parse_config(self):
        options = self.parser.parse_config(str(self.config_file))

        self.assertEqual(options['CONFIG_DEBUG_INFO'], 'y')
        self.assertEqual(options['CONFIG_DEBUG_INFO_SPLIT'], 'n')
        self.assertEqual(options['CONFIG_LOCALVERSION'], '-livepatch')

    def test_enabled_and_disabled(self):
        self.parser.parse_config(str(self.config_file))

        self.assertTrue(self.parser.is_enabled('CONFIG_MODULES'))
        self.assertTrue(self.parser.is_disabled('CONFIG_DEBUG_INFO_SPLIT'))
        self.assertTrue(self.parser.is_disabled('CONFIG_NOT_THERE'))

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            self.parser.parse_config(str(Path(self.test_dir) / "missing"))


class TestKernelConfigValidator(unittest.TestCase):
    """Test cases for KernelConfigValidator."""

    def parse(self, text):
        parser = KernelConfigParser()
        parser.config_options = {}
        for line in text.splitlines():
            if line.startswith('CONFIG_'):
                key, value = line.split('=', 1)
                parser.config_options[key] = value
        return parser

    def test_valid_config(self):
        results = KernelConfigValidator().ensure_valid(self.parse(SAMPLE_CONFIG))

        self.assertEqual([r.level for r in results], [ValidationLevel.INFO])
        self.assertIn("native", results[0].message)

    def test_missing_debug_info(self):
        with self.assertRaises(PrerequisiteMissingError) as context:
            KernelConfigValidator().ensure_valid(self.parse("CONFIG_LIVEPATCH=y\n"))
        self.assertEqual(str(context.exception), "kernel doesn't have 'CONFIG_DEBUG_INFO' enabled")

    def test_unsupported_option(self):
        config = "CONFIG_DEBUG_INFO=y\nCONFIG_GCC_PLUGIN_RANDSTRUCT=y\n"

        with self.assertRaises(PrerequisiteMissingError) as context:
            KernelConfigValidator().ensure_valid(self.parse(config))
        self.assertIn("CONFIG_GCC_PLUGIN_RANDSTRUCT", str(context.exception))

    def test_shadow_runtime_reported(self):
        results = KernelConfigValidator().validate_config(self.parse("CONFIG_DEBUG_INFO=y\n"))

        self.assertEqual(len(results), 1)
        self.assertIn("shadow runtime", results[0].message)


class TestPipelineSettings(unittest.TestCase):
    """Test cases for PipelineSettings."""

    def setUp(self):
        self.test_dir = tempfile.mkdtemp()
        self.source_dir = Path(self.test_dir) / "linux"
        self.source_dir.mkdir()
        (self.source_dir / ".config").write_text(SAMPLE_CONFIG)
        (self.source_dir / "vmlinux").write_bytes(b"")
        self.patch_file = Path(self.test_dir) / "fix.patch"
        self.patch_file.write_text("")

    def tearDown(self):
        shutil.rmtree(self.test_dir)

    def settings(self, **kwargs):
        kwargs.setdefault('source_dir', str(self.source_dir))
        kwargs.setdefault('patches', [str(self.patch_file)])
        return PipelineSettings(**kwargs)

    def test_source_dir_defaults(self):
        settings = self.settings()

        self.assertEqual(settings.config_file, str(self.source_dir / ".config"))
        self.assertEqual(settings.vmlinux, str(self.source_dir / "vmlinux"))
        self.assertGreaterEqual(settings.jobs, 1)
        self.assertTrue(settings.arch)
        settings.validate()

    def test_explicit_paths_kept(self):
        settings = self.settings(vmlinux="/boot/vmlinux-5.14")
        self.assertEqual(settings.vmlinux, "/boot/vmlinux-5.14")

    def test_validate_requires_patches(self):
        with self.assertRaises(ConfigurationError):
            self.settings(patches=[]).validate()

    def test_validate_missing_patch(self):
        with self.assertRaises(ConfigurationError) as context:
            self.settings(patches=[str(Path(self.test_dir) / "nope.patch")]).validate()
        self.assertIn("nope.patch", str(context.exception))

    def test_validate_requires_source(self):
        settings = PipelineSettings(patches=[str(self.patch_file)])
        with self.assertRaises(ConfigurationError):
            settings.validate()

    def test_validate_missing_vmlinux(self):
        (self.source_dir / "vmlinux").unlink()
        with self.assertRaises(ConfigurationError):
            self.settings().validate()

    def test_validate_oot_module(self):
        with self.assertRaises(ConfigurationError):
            self.settings(oot_module=str(Path(self.test_dir) / "ext.ko")).validate()

    def test_save_and_load(self):
        settings_file = Path(self.test_dir) / "settings.json"
        settings = self.settings(name="cve-fix", jobs=3, extra_make_args=["O=out"])

        save_settings(settings, str(settings_file))
        loaded = load_settings(str(settings_file))

        self.assertEqual(loaded, settings)

    def test_load_unknown_key(self):
        settings_file = Path(self.test_dir) / "settings.json"
        settings_file.write_text(json.dumps({"source_dir": str(self.source_dir), "colour": "blue"}))

        with self.assertRaises(ConfigurationError) as context:
            load_settings(str(settings_file))
        self.assertIn("colour", str(context.exception))

    def test_load_invalid_json(self):
        settings_file = Path(self.test_dir) / "settings.json"
        settings_file.write_text("{")

        with self.assertRaises(ConfigurationError):
            load_settings(str(settings_file))


if __name__ == '__main__':
    unittest.main()
