#!/usr/bin/env python3
"""
Configuration Management Module

This module handles configuration loading, validation, and management for the
cloud IaC generator, and builds the immutable per-engine configuration values
the Discovery and Generation engines are constructed with.
"""

import os
import yaml
import json
import logging
import logging.handlers
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field, asdict
from pathlib import Path
from jsonschema import validate, ValidationError

from .errors import ConfigError

logger = logging.getLogger(__name__)

ORGANIZATION_PATTERNS = ['flat', 'by_provider', 'by_service', 'by_region', 'by_resource_type']
PROVIDER_NAMES = ['aws', 'azure', 'gcp', 'vmware', 'kvm', 'kubernetes']


@dataclass
class DiscoveryConfig:
    """Configuration for resource discovery"""
    providers: List[str] = field(default_factory=lambda: ['aws'])
    regions: List[str] = field(default_factory=list)
    resource_types: List[str] = field(default_factory=list)
    max_concurrency: int = 10
    timeout: int = 600  # seconds
    retry_attempts: int = 3
    retry_delay: float = 1.0  # seconds
    use_unified_backend: bool = False
    aws_profile: Optional[str] = None


@dataclass
class GenerationConfig:
    """Configuration for IaC generation"""
    format: str = "terraform"
    organization: str = "by_provider"
    output_path: str = "./generated"
    include_provider: bool = True
    provider_version: Optional[str] = None
    generate_modules: bool = False
    validate_output: bool = True
    force: bool = False
    timeout: int = 300  # seconds


@dataclass
class OutputConfig:
    """Configuration for exported data"""
    export_format: str = "json"  # json, yaml
    export_discovery_data: bool = True


@dataclass
class LoggingConfig:
    """Configuration for logging"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    console: bool = True
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass
class ToolConfig:
    """Main configuration class for the cloud IaC generator"""
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


@dataclass(frozen=True)
class DiscoveryEngineConfig:
    """Immutable settings a DiscoveryEngine is constructed with"""
    max_concurrency: int = 10
    timeout: float = 600.0
    retry_attempts: int = 3
    retry_delay: float = 1.0
    use_unified_backend: bool = False

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ConfigError(f"max_concurrency must be at least 1, got {self.max_concurrency}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
        if self.retry_attempts < 1:
            raise ConfigError(f"retry_attempts must be at least 1, got {self.retry_attempts}")
        if self.retry_delay < 0:
            raise ConfigError(f"retry_delay must not be negative, got {self.retry_delay}")

    @classmethod
    def from_tool_config(cls, config: ToolConfig) -> 'DiscoveryEngineConfig':
        d = config.discovery
        return cls(
            max_concurrency=d.max_concurrency,
            timeout=float(d.timeout),
            retry_attempts=d.retry_attempts,
            retry_delay=float(d.retry_delay),
            use_unified_backend=d.use_unified_backend,
        )


@dataclass(frozen=True)
class GenerationEngineConfig:
    """Immutable settings a GenerationEngine is constructed with"""
    default_format: str = "terraform"
    default_organization: str = "by_provider"
    include_provider: bool = True
    validate_output: bool = True
    timeout: float = 300.0
    generator_name: str = "cloud-iac-generator"

    def __post_init__(self):
        if self.default_organization not in ORGANIZATION_PATTERNS:
            raise ConfigError(f"Unknown organization pattern: {self.default_organization}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")

    @classmethod
    def from_tool_config(cls, config: ToolConfig) -> 'GenerationEngineConfig':
        g = config.generation
        return cls(
            default_format=g.format,
            default_organization=g.organization,
            include_provider=g.include_provider,
            validate_output=g.validate_output,
            timeout=float(g.timeout),
        )


class ConfigManager:
    """Configuration manager for the cloud IaC generator"""

    # JSON Schema for configuration validation
    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "discovery": {
                "type": "object",
                "properties": {
                    "providers": {
                        "type": "array",
                        "items": {"type": "string", "enum": PROVIDER_NAMES},
                        "minItems": 1
                    },
                    "regions": {"type": "array", "items": {"type": "string"}},
                    "resource_types": {"type": "array", "items": {"type": "string"}},
                    "max_concurrency": {"type": "integer", "minimum": 1, "maximum": 100},
                    "timeout": {"type": "integer", "minimum": 1},
                    "retry_attempts": {"type": "integer", "minimum": 1, "maximum": 10},
                    "retry_delay": {"type": "number", "minimum": 0},
                    "use_unified_backend": {"type": "boolean"},
                    "aws_profile": {"type": ["string", "null"]}
                }
            },
            "generation": {
                "type": "object",
                "properties": {
                    "format": {"type": "string"},
                    "organization": {"type": "string", "enum": ORGANIZATION_PATTERNS},
                    "output_path": {"type": "string"},
                    "include_provider": {"type": "boolean"},
                    "provider_version": {"type": ["string", "null"]},
                    "generate_modules": {"type": "boolean"},
                    "validate_output": {"type": "boolean"},
                    "force": {"type": "boolean"},
                    "timeout": {"type": "integer", "minimum": 1}
                }
            },
            "output": {
                "type": "object",
                "properties": {
                    "export_format": {"type": "string", "enum": ["json", "yaml"]},
                    "export_discovery_data": {"type": "boolean"}
                }
            },
            "logging": {
                "type": "object",
                "properties": {
                    "level": {
                        "type": "string",
                        "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
                    },
                    "format": {"type": "string"},
                    "file": {"type": ["string", "null"]},
                    "console": {"type": "boolean"},
                    "max_file_size": {"type": "integer", "minimum": 1024},
                    "backup_count": {"type": "integer", "minimum": 1}
                }
            }
        }
    }

    DEFAULT_LOCATIONS = [
        './cloud-iac.yaml',
        './cloud-iac.yml',
        './config/cloud-iac.yaml',
        '~/.cloud-iac/config.yaml',
        '/etc/cloud-iac/config.yaml'
    ]

    def __init__(self):
        self.config = ToolConfig()
        self._config_sources = []

    def load_config(self,
                    config_file: Optional[str] = None,
                    cli_args: Optional[Dict[str, Any]] = None,
                    env_vars: bool = True) -> ToolConfig:
        """
        Load configuration from multiple sources with precedence:
        1. CLI arguments (highest priority)
        2. Environment variables
        3. Configuration file
        4. Default values (lowest priority)
        """
        logger.info("Loading configuration")

        self.config = ToolConfig()
        self._config_sources = ["defaults"]

        if config_file:
            self._load_from_file(config_file)
        else:
            for location in self.DEFAULT_LOCATIONS:
                expanded_path = os.path.expanduser(location)
                if os.path.exists(expanded_path):
                    self._load_from_file(expanded_path)
                    break

        if env_vars:
            self._load_from_env()

        if cli_args:
            self._apply_cli_args(cli_args)

        self._validate_config()

        logger.info(f"Configuration loaded from sources: {', '.join(self._config_sources)}")
        return self.config

    def _load_from_file(self, config_file: str):
        """Merge a YAML or JSON config file; an empty file changes nothing"""
        path = Path(config_file).expanduser()
        if not path.is_file():
            raise ConfigError(f"Configuration file not found: {config_file}")

        parser = _FILE_PARSERS.get(path.suffix.lower())
        if parser is None:
            raise ConfigError(f"Unsupported configuration file format: {path.suffix}")

        try:
            with path.open('r', encoding='utf-8') as fh:
                data = parser(fh)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            logger.error(f"Cannot parse {config_file}: {str(e)}")
            raise ConfigError(f"Invalid configuration file {config_file}: {str(e)}")

        if not data:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file {config_file} must contain a mapping")
        self._merge_config(data)
        self._config_sources.append(f"file:{config_file}")
        logger.info(f"Merged configuration file {config_file}")

    def _load_from_env(self):
        """Load configuration from environment variables"""
        env_config = {}

        def set_value(section: str, key: str, value: Any):
            env_config.setdefault(section, {})[key] = value

        if os.getenv('CLOUD_IAC_PROVIDERS'):
            set_value('discovery', 'providers', _split_list(os.getenv('CLOUD_IAC_PROVIDERS')))

        if os.getenv('CLOUD_IAC_REGIONS'):
            set_value('discovery', 'regions', _split_list(os.getenv('CLOUD_IAC_REGIONS')))

        if os.getenv('CLOUD_IAC_MAX_CONCURRENCY'):
            set_value('discovery', 'max_concurrency', _parse_int('CLOUD_IAC_MAX_CONCURRENCY'))

        if os.getenv('CLOUD_IAC_TIMEOUT'):
            set_value('discovery', 'timeout', _parse_int('CLOUD_IAC_TIMEOUT'))

        if os.getenv('CLOUD_IAC_AWS_PROFILE'):
            set_value('discovery', 'aws_profile', os.getenv('CLOUD_IAC_AWS_PROFILE'))

        if os.getenv('CLOUD_IAC_OUTPUT_PATH'):
            set_value('generation', 'output_path', os.getenv('CLOUD_IAC_OUTPUT_PATH'))

        if os.getenv('CLOUD_IAC_ORGANIZATION'):
            set_value('generation', 'organization', os.getenv('CLOUD_IAC_ORGANIZATION'))

        if os.getenv('CLOUD_IAC_LOG_LEVEL'):
            set_value('logging', 'level', os.getenv('CLOUD_IAC_LOG_LEVEL').upper())

        if os.getenv('CLOUD_IAC_LOG_FILE'):
            set_value('logging', 'file', os.getenv('CLOUD_IAC_LOG_FILE'))

        if env_config:
            self._merge_config(env_config)
            self._config_sources.append("environment")
            logger.debug("Loaded configuration from environment variables")

    def _apply_cli_args(self, cli_args: Dict[str, Any]):
        """Apply CLI arguments to configuration"""
        cli_config = {}

        discovery_keys = ['providers', 'regions', 'resource_types', 'max_concurrency',
                          'timeout', 'aws_profile']
        for key in discovery_keys:
            if cli_args.get(key):
                cli_config.setdefault('discovery', {})[key] = list(cli_args[key]) \
                    if isinstance(cli_args[key], tuple) else cli_args[key]

        if cli_args.get('output_path'):
            cli_config.setdefault('generation', {})['output_path'] = cli_args['output_path']

        if cli_args.get('format'):
            cli_config.setdefault('generation', {})['format'] = cli_args['format']

        if cli_args.get('organization'):
            cli_config.setdefault('generation', {})['organization'] = cli_args['organization']

        if cli_args.get('force'):
            cli_config.setdefault('generation', {})['force'] = True

        if cli_args.get('verbose'):
            cli_config.setdefault('logging', {})['level'] = 'DEBUG'
        elif cli_args.get('quiet'):
            cli_config.setdefault('logging', {})['level'] = 'WARNING'

        if cli_config:
            self._merge_config(cli_config)
            self._config_sources.append("cli_args")
            logger.debug("Applied CLI arguments to configuration")

    def _merge_config(self, overrides: Dict[str, Any]):
        """Overlay one source onto the current config, section by section"""
        config_dict = _deep_merge(asdict(self.config), overrides)
        self._validate_dict(config_dict)
        self.config = self._dict_to_config(config_dict)

    def _dict_to_config(self, config_dict: Dict[str, Any]) -> ToolConfig:
        """Convert dictionary to configuration dataclass"""
        try:
            return ToolConfig(
                discovery=DiscoveryConfig(**config_dict.get('discovery', {})),
                generation=GenerationConfig(**config_dict.get('generation', {})),
                output=OutputConfig(**config_dict.get('output', {})),
                logging=LoggingConfig(**config_dict.get('logging', {}))
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {str(e)}")

    def _validate_dict(self, config_dict: Dict[str, Any]):
        try:
            validate(instance=config_dict, schema=self.CONFIG_SCHEMA)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e.message}")
            raise ConfigError(f"Invalid configuration: {e.message}")

    def _validate_config(self):
        """Validate configuration against schema"""
        self._validate_dict(asdict(self.config))
        logger.debug("Configuration validation passed")

    def save_config(self, output_file: str, format: str = 'yaml'):
        """Save current configuration to file"""
        config_dict = asdict(self.config)

        with open(output_file, 'w') as f:
            if format.lower() == 'yaml':
                yaml.safe_dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)
            elif format.lower() == 'json':
                json.dump(config_dict, f, indent=2)
            else:
                raise ValueError(f"Unsupported format: {format}")

        logger.info(f"Configuration saved to {output_file}")

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration"""
        return {
            'sources': self._config_sources,
            'providers': self.config.discovery.providers,
            'regions': self.config.discovery.regions,
            'max_concurrency': self.config.discovery.max_concurrency,
            'output_path': self.config.generation.output_path,
            'organization': self.config.generation.organization,
            'logging_level': self.config.logging.level
        }


_FILE_PARSERS = {
    '.yaml': yaml.safe_load,
    '.yml': yaml.safe_load,
    '.json': json.load,
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Nested dicts merge key by key; any other value replaces the base value"""
    for key, value in overrides.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            _deep_merge(current, value)
        else:
            base[key] = value
    return base


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


def _parse_int(env_name: str) -> int:
    raw = os.getenv(env_name)
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{env_name} must be an integer, got {raw!r}")


def setup_logging(config: LoggingConfig):
    """Install console and rotating file handlers on the root logger"""
    root = logging.getLogger()
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    formatter = logging.Formatter(config.format)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    if config.console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    if config.file:
        log_path = Path(config.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=config.max_file_size,
            backupCount=config.backup_count
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # boto's own debug output drowns ours
    for noisy in ('boto3', 'botocore', 'urllib3'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


# Default configuration template
DEFAULT_CONFIG_TEMPLATE = """
# Cloud IaC Generator Configuration

discovery:
  providers:
    - aws
  regions:
    - us-east-1
    - us-west-2
  resource_types: []  # empty means every type the connector supports
  max_concurrency: 10
  timeout: 600  # seconds
  retry_attempts: 3
  retry_delay: 1.0  # seconds
  use_unified_backend: false
  aws_profile: null  # AWS profile to use

generation:
  format: terraform  # terraform, terraform-json
  organization: by_provider  # flat, by_provider, by_service, by_region, by_resource_type
  output_path: "./generated"
  include_provider: true
  provider_version: null  # overrides the mapper's default constraint
  generate_modules: false
  validate_output: true
  force: false
  timeout: 300

output:
  export_format: json  # json, yaml
  export_discovery_data: true

logging:
  level: INFO  # DEBUG, INFO, WARNING, ERROR, CRITICAL
  format: "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
  file: null  # Log file path (null for no file logging)
  console: true
  max_file_size: 10485760  # 10MB
  backup_count: 5
"""
