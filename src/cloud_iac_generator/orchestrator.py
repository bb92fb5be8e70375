#!/usr/bin/env python3
"""
Orchestration Controller

This module wires the discovery and generation engines together from a
ToolConfig and runs the pipeline from discovery through file generation.
"""

import time
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .aws_mapper import AWSMapper
from .config import DiscoveryEngineConfig, GenerationEngineConfig, ToolConfig
from .connectors import AWSConnector
from .discovery import DiscoveryEngine, ProviderConnector
from .errors import CloudIacError
from .generation import GenerationEngine, GenerationOptions, GenerationPreview, GenerationResult
from .mapping import ResourceMapper
from .models import CloudProvider, DiscoveryOptions, DiscoveryResult, Filter, Resource, parse_provider

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Main orchestration controller

    Builds a DiscoveryEngine and a GenerationEngine from the tool
    configuration, registers the AWS connector and mapper by default, and
    runs discovery followed by generation.
    """

    def __init__(self,
                 config: ToolConfig,
                 connectors: Optional[List[ProviderConnector]] = None,
                 mappers: Optional[List[ResourceMapper]] = None):
        """
        Initialize the orchestrator

        Args:
            config: Tool configuration object
            connectors: Connectors to register instead of the default AWS one
            mappers: Mappers to register instead of the default AWS one
        """
        self.config = config

        self.discovery_engine = DiscoveryEngine(DiscoveryEngineConfig.from_tool_config(config))
        self.generation_engine = GenerationEngine(GenerationEngineConfig.from_tool_config(config))

        if connectors is None:
            connectors = self._default_connectors()
        for connector in connectors:
            self.discovery_engine.register_connector(connector)

        for mapper in (mappers if mappers is not None else [AWSMapper()]):
            self.generation_engine.register_mapper(mapper)

        logger.info("Initialized Orchestrator with all components")

    def _default_connectors(self) -> List[ProviderConnector]:
        discovery = self.config.discovery
        if CloudProvider.AWS.value not in discovery.providers:
            return []
        return [AWSConnector(profile=discovery.aws_profile, regions=discovery.regions)]

    def discovery_options(self,
                          filters: Optional[List[Filter]] = None,
                          include_tags: Optional[List[str]] = None,
                          exclude_tags: Optional[List[str]] = None) -> DiscoveryOptions:
        """Build DiscoveryOptions from the discovery section of the config"""
        discovery = self.config.discovery
        return DiscoveryOptions(
            providers=[parse_provider(p) for p in discovery.providers],
            regions=list(discovery.regions),
            resource_types=list(discovery.resource_types),
            include_tags=list(include_tags or []),
            exclude_tags=list(exclude_tags or []),
            max_concurrency=discovery.max_concurrency,
            timeout=float(discovery.timeout),
            filters=list(filters or []),
        )

    def generation_options(self, resources: List[Resource], **overrides) -> GenerationOptions:
        """Build GenerationOptions from the generation section of the config"""
        generation = self.config.generation
        options = GenerationOptions(
            resources=list(resources),
            format=generation.format,
            output_path=generation.output_path,
            organization=generation.organization,
            include_provider=generation.include_provider,
            provider_version=generation.provider_version,
            generate_modules=generation.generate_modules,
            validate_output=generation.validate_output,
            force=generation.force,
            timeout=float(generation.timeout),
        )
        for key, value in overrides.items():
            if not hasattr(options, key):
                raise TypeError(f"Unknown generation option: {key}")
            setattr(options, key, value)
        return options

    def discover(self, options: Optional[DiscoveryOptions] = None) -> DiscoveryResult:
        return self.discovery_engine.discover(options or self.discovery_options())

    def generate(self, resources: List[Resource], **overrides) -> GenerationResult:
        return self.generation_engine.generate(self.generation_options(resources, **overrides))

    def preview(self, resources: List[Resource], **overrides) -> GenerationPreview:
        return self.generation_engine.preview(self.generation_options(resources, **overrides))

    def export_discovery(self, result: DiscoveryResult) -> Optional[Path]:
        """Write discovery data beside the generated files when configured"""
        if not self.config.output.export_discovery_data:
            return None
        export_format = self.config.output.export_format
        discovery_file = Path(self.config.generation.output_path) / f"discovery_results.{export_format}"
        discovery_file.parent.mkdir(parents=True, exist_ok=True)
        result.export(discovery_file, export_format)
        logger.info(f"Discovery data exported to {discovery_file}")
        return discovery_file

    def run(self, options: Optional[DiscoveryOptions] = None, dry_run: bool = False) -> Dict[str, Any]:
        """
        Run discovery then generation

        Args:
            options: Discovery options; built from the config when omitted
            dry_run: Preview the generated layout instead of writing files

        Returns:
            Summary dictionary with counts, error and warning messages and
            the success flag the CLI turns into an exit code
        """
        logger.info("Starting discovery and IaC generation")
        start_time = time.time()

        summary: Dict[str, Any] = {
            'success': False,
            'fatal': False,
            'dry_run': dry_run,
            'discovered': 0,
            'mapped': 0,
            'rendered': 0,
            'files': [],
            'errors': [],
            'warnings': [],
            'output_path': self.config.generation.output_path,
        }

        try:
            # Phase 1: Discovery
            logger.info("Phase 1: Discovering resources")
            discovery_result = self.discover(options)
            summary['discovered'] = len(discovery_result.resources)
            summary['errors'].extend(
                f"discovery: {e.provider.value if e.provider else 'unified'}: {e.message}"
                for e in discovery_result.errors
            )

            # Phase 2: Generation
            if not discovery_result.resources:
                summary['errors'].append("No resources discovered")
            elif dry_run:
                logger.info("Phase 2: Previewing generated layout")
                preview = self.preview(discovery_result.resources)
                summary['mapped'] = preview.mappable_count
                summary['files'] = [f['path'] for f in preview.files]
                summary['warnings'].extend(
                    f"{item['type']} ({item['resource_id']}): {item['reason']}" for item in preview.unsupported
                )
                summary['success'] = preview.mappable_count > 0
            else:
                logger.info("Phase 2: Generating IaC files")
                generation_result = self.generate(discovery_result.resources)
                summary['mapped'] = generation_result.metadata.mapped_count
                summary['rendered'] = generation_result.rendered_count
                summary['files'] = [f.path for f in generation_result.files]
                summary['errors'].extend(f"{e.severity}: {e.message}" for e in generation_result.errors)
                summary['warnings'].extend(f"{w.type}: {w.message}" for w in generation_result.warnings)
                summary['success'] = generation_result.success and generation_result.rendered_count > 0

                if generation_result.metadata.written:
                    summary['discovery_file'] = self.export_discovery(discovery_result)

        except CloudIacError as e:
            error_msg = f"Pipeline failed: {str(e)}"
            logger.error(error_msg)
            summary['errors'].append(error_msg)
            summary['fatal'] = True

        summary['total_time'] = time.time() - start_time
        logger.info(f"Pipeline finished in {summary['total_time']:.2f} seconds "
                    f"(discovered={summary['discovered']}, mapped={summary['mapped']}, "
                    f"files={len(summary['files'])})")
        return summary
