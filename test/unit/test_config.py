#!/usr/bin/env python3
"""
Unit tests for configuration management
"""

import unittest
import sys
import os
import json
import logging
import logging.handlers
import tempfile
import shutil
from unittest.mock import patch

import yaml

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))

from cloud_iac_generator.config import (
    ConfigManager, DEFAULT_CONFIG_TEMPLATE, DiscoveryEngineConfig, GenerationEngineConfig,
    LoggingConfig, ToolConfig, setup_logging
)
from cloud_iac_generator.errors import ConfigError


class TestConfigManager(unittest.TestCase):
    """Test configuration loading and precedence"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.manager = ConfigManager()
        locations = patch.object(ConfigManager, 'DEFAULT_LOCATIONS', [])
        locations.start()
        self.addCleanup(locations.stop)
        env = patch.dict(os.environ, {k: v for k, v in os.environ.items() if not k.startswith('CLOUD_IAC_')},
                         clear=True)
        env.start()
        self.addCleanup(env.stop)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _write(self, name, content):
        path = os.path.join(self.temp_dir, name)
        with open(path, 'w') as f:
            f.write(content)
        return path

    def test_defaults(self):
        config = self.manager.load_config()

        self.assertIsInstance(config, ToolConfig)
        self.assertEqual(config.discovery.providers, ['aws'])
        self.assertEqual(config.discovery.max_concurrency, 10)
        self.assertEqual(config.generation.organization, 'by_provider')
        self.assertEqual(config.logging.level, 'INFO')
        self.assertEqual(self.manager.get_config_summary()['sources'], ['defaults'])

    def test_yaml_file(self):
        path = self._write('config.yaml', "discovery:\n  regions: [eu-west-1]\n  max_concurrency: 4\n"
                                          "generation:\n  organization: flat\n")
        config = self.manager.load_config(config_file=path)

        self.assertEqual(config.discovery.regions, ['eu-west-1'])
        self.assertEqual(config.discovery.max_concurrency, 4)
        self.assertEqual(config.discovery.timeout, 600)
        self.assertEqual(config.generation.organization, 'flat')
        self.assertIn(f"file:{path}", self.manager.get_config_summary()['sources'])

    def test_json_file(self):
        path = self._write('config.json', json.dumps({"generation": {"format": "terraform-json"}}))
        config = self.manager.load_config(config_file=path)
        self.assertEqual(config.generation.format, 'terraform-json')

    def test_default_template_is_valid(self):
        path = self._write('cloud-iac.yaml', DEFAULT_CONFIG_TEMPLATE)
        config = self.manager.load_config(config_file=path)
        self.assertEqual(config.discovery.regions, ['us-east-1', 'us-west-2'])

    def test_missing_file(self):
        with self.assertRaises(ConfigError):
            self.manager.load_config(config_file=os.path.join(self.temp_dir, 'nope.yaml'))

    def test_unsupported_extension(self):
        path = self._write('config.ini', "[discovery]\n")
        with self.assertRaises(ConfigError):
            self.manager.load_config(config_file=path)

    def test_malformed_yaml(self):
        path = self._write('broken.yaml', "discovery: [unclosed\n")
        with self.assertRaises(ConfigError):
            self.manager.load_config(config_file=path)

    def test_schema_violation(self):
        path = self._write('bad.yaml', "discovery:\n  max_concurrency: 0\n")
        with self.assertRaises(ConfigError):
            self.manager.load_config(config_file=path)

        path = self._write('bad_pattern.yaml', "generation:\n  organization: by_color\n")
        with self.assertRaises(ConfigError):
            self.manager.load_config(config_file=path)

    def test_unknown_key(self):
        path = self._write('extra.yaml', "discovery:\n  colour: blue\n")
        with self.assertRaises(ConfigError):
            self.manager.load_config(config_file=path)

    def test_environment_overrides_file(self):
        path = self._write('config.yaml', "discovery:\n  regions: [eu-west-1]\n")
        with patch.dict(os.environ, {'CLOUD_IAC_REGIONS': 'us-east-1, us-west-2',
                                     'CLOUD_IAC_MAX_CONCURRENCY': '3',
                                     'CLOUD_IAC_LOG_LEVEL': 'debug'}):
            config = self.manager.load_config(config_file=path)

        self.assertEqual(config.discovery.regions, ['us-east-1', 'us-west-2'])
        self.assertEqual(config.discovery.max_concurrency, 3)
        self.assertEqual(config.logging.level, 'DEBUG')
        self.assertIn('environment', self.manager.get_config_summary()['sources'])

    def test_environment_ignored_when_disabled(self):
        with patch.dict(os.environ, {'CLOUD_IAC_REGIONS': 'us-east-1'}):
            config = self.manager.load_config(env_vars=False)
        self.assertEqual(config.discovery.regions, [])

    def test_bad_integer_in_environment(self):
        with patch.dict(os.environ, {'CLOUD_IAC_TIMEOUT': 'soon'}):
            with self.assertRaises(ConfigError) as cm:
                self.manager.load_config()
        self.assertIn('CLOUD_IAC_TIMEOUT', str(cm.exception))

    def test_cli_args_win(self):
        with patch.dict(os.environ, {'CLOUD_IAC_REGIONS': 'us-east-1'}):
            config = self.manager.load_config(cli_args={
                'regions': ('ap-south-1',),
                'organization': 'by_region',
                'force': True,
                'verbose': True,
                'max_concurrency': None,
            })

        self.assertEqual(config.discovery.regions, ['ap-south-1'])
        self.assertEqual(config.discovery.max_concurrency, 10)
        self.assertEqual(config.generation.organization, 'by_region')
        self.assertTrue(config.generation.force)
        self.assertEqual(config.logging.level, 'DEBUG')

    def test_quiet(self):
        config = self.manager.load_config(cli_args={'quiet': True})
        self.assertEqual(config.logging.level, 'WARNING')

    def test_save_and_reload(self):
        self.manager.load_config(cli_args={'regions': ['us-west-2']})
        for fmt, name in (('yaml', 'saved.yaml'), ('json', 'saved.json')):
            with self.subTest(format=fmt):
                path = os.path.join(self.temp_dir, name)
                self.manager.save_config(path, fmt)
                config = ConfigManager().load_config(config_file=path)
                self.assertEqual(config.discovery.regions, ['us-west-2'])

        with open(os.path.join(self.temp_dir, 'saved.yaml')) as f:
            self.assertIn('discovery', yaml.safe_load(f))

        with self.assertRaises(ValueError):
            self.manager.save_config(os.path.join(self.temp_dir, 'saved.toml'), 'toml')


class TestEngineConfig(unittest.TestCase):
    """Test the immutable per-engine configuration values"""

    def test_discovery_engine_config_from_tool_config(self):
        tool = ToolConfig()
        tool.discovery.max_concurrency = 2
        tool.discovery.retry_attempts = 5
        config = DiscoveryEngineConfig.from_tool_config(tool)

        self.assertEqual(config.max_concurrency, 2)
        self.assertEqual(config.retry_attempts, 5)
        self.assertEqual(config.timeout, 600.0)

    def test_discovery_engine_config_bounds(self):
        for kwargs in ({'max_concurrency': 0}, {'timeout': 0}, {'retry_attempts': 0}, {'retry_delay': -1}):
            with self.subTest(**kwargs):
                with self.assertRaises(ConfigError):
                    DiscoveryEngineConfig(**kwargs)

    def test_generation_engine_config(self):
        tool = ToolConfig()
        tool.generation.organization = 'flat'
        config = GenerationEngineConfig.from_tool_config(tool)
        self.assertEqual(config.default_organization, 'flat')
        self.assertTrue(config.include_provider)

        with self.assertRaises(ConfigError):
            GenerationEngineConfig(default_organization='by_color')
        with self.assertRaises(ConfigError):
            GenerationEngineConfig(timeout=-1)


class TestSetupLogging(unittest.TestCase):
    """Test logging handler installation"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        root = logging.getLogger()
        self.saved = (root.level, list(root.handlers))

    def tearDown(self):
        root = logging.getLogger()
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
        level, handlers = self.saved
        root.setLevel(level)
        for handler in handlers:
            root.addHandler(handler)
        shutil.rmtree(self.temp_dir)

    def test_console_and_file_handlers(self):
        log_file = os.path.join(self.temp_dir, 'logs', 'cloud-iac.log')
        setup_logging(LoggingConfig(level='DEBUG', file=log_file))

        root = logging.getLogger()
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 2)
        self.assertTrue(any(isinstance(h, logging.handlers.RotatingFileHandler) for h in root.handlers))
        self.assertTrue(os.path.isdir(os.path.dirname(log_file)))
        self.assertEqual(logging.getLogger('botocore').level, logging.WARNING)

    def test_console_disabled(self):
        setup_logging(LoggingConfig(console=False))
        self.assertEqual(logging.getLogger().handlers, [])


if __name__ == '__main__':
    unittest.main()
