#!/usr/bin/env python3
"""
Command Line Interface for the Cloud IaC Generator

This module provides the CLI for discovering cloud resources and generating
Terraform from them.
"""

import click
import json
import os
import sys
from collections import Counter
from typing import Any, Dict, List, Optional

import yaml
from tabulate import tabulate

from . import __version__
from .aws_mapper import AWSMapper
from .config import ConfigManager, ToolConfig, DEFAULT_CONFIG_TEMPLATE, ORGANIZATION_PATTERNS, setup_logging
from .errors import CloudIacError, ConfigError, DiscoveryTimeoutError, NoResourcesMappedError
from .generation import GenerationPreview, GenerationResult
from .models import DiscoveryResult, Filter, load_resources
from .orchestrator import Orchestrator
from .renderer import default_renderers

FORMAT_CHOICES = [renderer.format_name for renderer in default_renderers()]


def _load_config(ctx, **cli_args) -> ToolConfig:
    """Load configuration with CLI overrides and install logging handlers"""
    cli_args['verbose'] = ctx.obj.get('verbose')
    cli_args['quiet'] = ctx.obj.get('quiet')
    try:
        config = ConfigManager().load_config(config_file=ctx.obj.get('config_file'), cli_args=cli_args)
    except ConfigError as e:
        click.echo(f"Error Configuration invalid: {str(e)}", err=True)
        sys.exit(1)
    setup_logging(config.logging)
    return config


def _parse_filters(expressions) -> List[Filter]:
    try:
        return [Filter.parse(expression) for expression in expressions]
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="'--filter'")


def discovery_options(func):
    """Options shared by the discover and run commands"""
    options = [
        click.option('--provider', '-p', 'providers', multiple=True,
                     help='Cloud provider to discover (can be specified multiple times)'),
        click.option('--region', '-r', 'regions', multiple=True,
                     help='Region to scan (can be specified multiple times)'),
        click.option('--type', '-t', 'resource_types', multiple=True,
                     help='Resource type to discover, e.g. aws_vpc (can be specified multiple times)'),
        click.option('--filter', '-f', 'filters', multiple=True,
                     help='Filter as field:operator:value, e.g. tags.env:eq:prod; true, false and integers match typed values'),
        click.option('--include-tag', 'include_tags', multiple=True,
                     help='Keep only resources carrying this tag key'),
        click.option('--exclude-tag', 'exclude_tags', multiple=True,
                     help='Drop resources carrying this tag key'),
        click.option('--profile', 'aws_profile', help='AWS profile to use'),
        click.option('--max-concurrency', type=int, help='Maximum providers discovered in parallel'),
        click.option('--timeout', type=int, help='Discovery timeout in seconds'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__)
@click.option('--config', '-c', type=click.Path(exists=True),
              help='Configuration file path')
@click.option('--verbose', '-v', is_flag=True,
              help='Enable verbose logging')
@click.option('--quiet', '-q', is_flag=True,
              help='Enable quiet mode (warnings and errors only)')
@click.pass_context
def cli(ctx, config, verbose, quiet):
    """
    Cloud IaC Generator

    Discovers resources from cloud providers and generates Terraform
    configurations that describe them.
    """
    ctx.ensure_object(dict)

    ctx.obj['config_file'] = config
    ctx.obj['verbose'] = verbose
    ctx.obj['quiet'] = quiet


@cli.command()
@discovery_options
@click.option('--output-file', '-o', default='discovery_results.json',
              help='Output file for discovery results')
@click.option('--format', 'output_format', type=click.Choice(['json', 'yaml', 'table']),
              default='json', help='Output format')
@click.pass_context
def discover(ctx, providers, regions, resource_types, filters, include_tags, exclude_tags,
             aws_profile, max_concurrency, timeout, output_file, output_format):
    """
    Discover cloud resources

    Scans the configured providers and regions and writes the discovered
    resources in the interchange format read by the generate command.
    """
    config = _load_config(ctx, providers=providers, regions=regions, resource_types=resource_types,
                          aws_profile=aws_profile, max_concurrency=max_concurrency, timeout=timeout)
    parsed_filters = _parse_filters(filters)

    try:
        orchestrator = Orchestrator(config)
        click.echo("Discovering Starting resource discovery...")
        result = orchestrator.discover(orchestrator.discovery_options(
            filters=parsed_filters, include_tags=list(include_tags), exclude_tags=list(exclude_tags)))
    except DiscoveryTimeoutError as e:
        click.echo(f"Error Discovery timed out: {str(e)}", err=True)
        sys.exit(1)
    except CloudIacError as e:
        click.echo(f"Error Discovery failed: {str(e)}", err=True)
        sys.exit(1)

    click.echo(f"\nSuccess Discovery completed in {result.metadata.duration:.2f} seconds")
    click.echo(f"    Total resources: {result.metadata.resource_count}")
    click.echo(f"    Errors: {result.metadata.error_count}")

    if output_format == 'table':
        _display_discovery_table(result)
    else:
        result.export(output_file, output_format)
        click.echo(f"\nFiles: Results exported to: {output_file}")

    if result.errors:
        _display_discovery_errors(result)


@cli.command()
@click.argument('input_file', type=click.Path(exists=True))
@click.option('--output-path', '-o', help='Directory to write generated files to')
@click.option('--format', 'iac_format', type=click.Choice(FORMAT_CHOICES), help='Output format')
@click.option('--organization', type=click.Choice(ORGANIZATION_PATTERNS), help='File organization pattern')
@click.option('--single-file', is_flag=True, help='Write every resource into main.tf')
@click.option('--organize-by-type', is_flag=True, help='One file per resource type')
@click.option('--organize-by-region', is_flag=True, help='One file per region')
@click.option('--modules', 'generate_modules', is_flag=True, help='Emit one module per file group')
@click.option('--module-structure', type=click.Choice(ORGANIZATION_PATTERNS),
              help='Grouping used for modules')
@click.option('--include', 'include_resources', multiple=True,
              help='Only generate resources whose type or id contains this text')
@click.option('--exclude', 'exclude_resources', multiple=True,
              help='Skip resources whose type or id contains this text')
@click.option('--provider-version', help='Provider version constraint, e.g. "~> 5.0"')
@click.option('--no-provider', is_flag=True, help='Do not emit provider and versions files')
@click.option('--no-validate', is_flag=True, help='Skip syntax validation of generated files')
@click.option('--force', is_flag=True, help='Overwrite existing files')
@click.option('--dry-run', is_flag=True, help='Show the planned file layout without generating')
@click.pass_context
def generate(ctx, input_file, output_path, iac_format, organization, single_file, organize_by_type,
             organize_by_region, generate_modules, module_structure, include_resources, exclude_resources,
             provider_version, no_provider, no_validate, force, dry_run):
    """
    Generate IaC from discovered resources

    INPUT_FILE is a discovery result (JSON or YAML) or a bare list of
    resources.
    """
    config = _load_config(ctx, output_path=output_path, format=iac_format,
                          organization=organization, force=force)

    try:
        resources = load_resources(input_file)
    except (OSError, KeyError, ValueError, yaml.YAMLError) as e:
        click.echo(f"Error Failed to read {input_file}: {str(e)}", err=True)
        sys.exit(1)

    overrides: Dict[str, Any] = {
        'single_file': single_file,
        'organize_by_type': organize_by_type,
        'organize_by_region': organize_by_region,
        'generate_modules': generate_modules or config.generation.generate_modules,
        'module_structure': module_structure,
        'include_resources': list(include_resources),
        'exclude_resources': list(exclude_resources),
    }
    if provider_version:
        overrides['provider_version'] = provider_version
    if no_provider:
        overrides['include_provider'] = False
    if no_validate:
        overrides['validate_output'] = False

    orchestrator = Orchestrator(config, connectors=[])
    click.echo(f"Loaded {len(resources)} resources from {input_file}")

    try:
        if dry_run:
            click.echo("- Performing dry run...")
            _display_preview(orchestrator.preview(resources, **overrides))
            return

        click.echo("Starting IaC generation...")
        result = orchestrator.generate(resources, **overrides)
    except NoResourcesMappedError as e:
        click.echo(f"Error Generation failed: {str(e)}", err=True)
        if e.result is not None:
            _display_generation_issues(e.result)
        sys.exit(1)
    except CloudIacError as e:
        click.echo(f"Error Generation failed: {str(e)}", err=True)
        sys.exit(1)

    _display_generation_result(result, config.generation.output_path)
    if not result.success or result.rendered_count == 0:
        sys.exit(1)


@cli.command()
@discovery_options
@click.option('--output-path', '-o', help='Directory to write generated files to')
@click.option('--organization', type=click.Choice(ORGANIZATION_PATTERNS), help='File organization pattern')
@click.option('--force', is_flag=True, help='Overwrite existing files')
@click.option('--dry-run', is_flag=True, help='Discover and show the planned layout without generating')
@click.pass_context
def run(ctx, providers, regions, resource_types, filters, include_tags, exclude_tags,
        aws_profile, max_concurrency, timeout, output_path, organization, force, dry_run):
    """
    Discover resources and generate IaC in one step
    """
    config = _load_config(ctx, providers=providers, regions=regions, resource_types=resource_types,
                          aws_profile=aws_profile, max_concurrency=max_concurrency, timeout=timeout,
                          output_path=output_path, organization=organization, force=force)
    parsed_filters = _parse_filters(filters)

    try:
        orchestrator = Orchestrator(config)
    except CloudIacError as e:
        click.echo(f"Error Failed to initialize: {str(e)}", err=True)
        sys.exit(1)

    click.echo("Starting Starting discovery and IaC generation...")
    summary = orchestrator.run(
        orchestrator.discovery_options(filters=parsed_filters, include_tags=list(include_tags),
                                       exclude_tags=list(exclude_tags)),
        dry_run=dry_run,
    )
    _display_summary(summary)

    if summary['fatal'] or not summary['success']:
        sys.exit(1)


@cli.command()
@click.option('--output-file', '-o', default='cloud-iac.yaml',
              help='Output configuration file')
@click.option('--format', 'config_format', type=click.Choice(['yaml', 'json']),
              default='yaml', help='Configuration file format')
def init_config(output_file, config_format):
    """
    Generate a default configuration file

    This command creates a default configuration file that can be customized
    for your specific environment and requirements.
    """
    try:
        if os.path.exists(output_file):
            if not click.confirm(f"Configuration file {output_file} already exists. Overwrite?"):
                click.echo("Configuration file creation cancelled.")
                return

        with open(output_file, 'w') as f:
            if config_format == 'yaml':
                f.write(DEFAULT_CONFIG_TEMPLATE)
            else:
                json.dump(yaml.safe_load(DEFAULT_CONFIG_TEMPLATE), f, indent=2)

        click.echo(f"Success Default configuration file created: {output_file}")
        click.echo(" Edit this file to customize settings for your environment.")

    except OSError as e:
        click.echo(f"Error Failed to create configuration file: {str(e)}", err=True)
        sys.exit(1)


@cli.command()
@click.pass_context
def validate_config(ctx):
    """
    Validate configuration file

    This command validates the configuration file for syntax and semantic errors.
    """
    try:
        config_manager = ConfigManager()
        config_manager.load_config(config_file=ctx.obj.get('config_file'))
    except ConfigError as e:
        click.echo(f"Error Configuration validation failed: {str(e)}", err=True)
        sys.exit(1)

    click.echo("Success Configuration validation passed!")

    summary = config_manager.get_config_summary()
    click.echo("\n Configuration Summary:")
    for key, value in summary.items():
        click.echo(f"   {key}: {value}")


@cli.command()
def list_types():
    """
    List supported resource types and output formats
    """
    mapper = AWSMapper()
    rows = [[mapper.provider.value, source, mapper.target_type(source)]
            for source in mapper.get_supported_types()]
    click.echo("\n Supported Resource Types:")
    click.echo(tabulate(rows, headers=['Provider', 'Discovered Type', 'Terraform Type'], tablefmt='grid'))

    formats = [[r.format_name, r.file_extension, r.description] for r in default_renderers()]
    click.echo("\n Output Formats:")
    click.echo(tabulate(formats, headers=['Format', 'Extension', 'Description'], tablefmt='grid'))


def _display_discovery_table(result: DiscoveryResult):
    """Display discovery results in table format"""
    click.echo("\n Provider Summary:")
    provider_data = sorted(result.metadata.provider_stats.items())
    if provider_data:
        click.echo(tabulate(provider_data, headers=['Provider', 'Resources'], tablefmt='grid'))

    click.echo("\n Resource Type Summary:")
    type_counts = Counter(r.type for r in result.resources)
    resource_data = sorted(type_counts.items(), key=lambda x: x[1], reverse=True)
    if resource_data:
        click.echo(tabulate(resource_data[:20], headers=['Resource Type', 'Count'], tablefmt='grid'))
        if len(resource_data) > 20:
            click.echo(f"... and {len(resource_data) - 20} more resource types")

    if result.resources:
        click.echo("\n--  Resource Details:")
        details = [[r.type, r.id, r.name or '-', r.region or '-'] for r in result.resources[:50]]
        click.echo(tabulate(details, headers=['Type', 'ID', 'Name', 'Region'], tablefmt='grid'))


def _display_discovery_errors(result: DiscoveryResult):
    rows = [[e.provider.value if e.provider else 'unified', e.region or '-', e.message]
            for e in result.errors]
    click.echo("\nWarning  Discovery errors:")
    click.echo(tabulate(rows, headers=['Provider', 'Region', 'Message'], tablefmt='grid'))


def _display_preview(preview: GenerationPreview):
    click.echo(f"\n Planned layout ({preview.format}, {preview.organization}):")
    rows = [[f['path'], f['type'], f['resource_count'], f['estimated_size']] for f in preview.files]
    click.echo(tabulate(rows, headers=['File', 'Type', 'Resources', 'Est. Bytes'], tablefmt='grid'))
    click.echo(f"    Resources: {preview.mappable_count}/{preview.resource_count} mappable")
    click.echo(f"    Estimated size: {preview.estimated_size} bytes")

    if preview.unsupported:
        click.echo("\nWarning  Unsupported resources:")
        rows = [[u['type'], u['resource_id'], u['reason'], u['suggestion']] for u in preview.unsupported]
        click.echo(tabulate(rows, headers=['Type', 'ID', 'Reason', 'Suggestion'], tablefmt='grid'))


def _display_generation_issues(result: GenerationResult):
    if result.errors:
        click.echo("\nError Errors:")
        rows = [[e.severity, e.resource_type or '-', e.resource_id or e.file or '-', e.message]
                for e in result.errors]
        click.echo(tabulate(rows, headers=['Severity', 'Type', 'Resource', 'Message'], tablefmt='grid'))
    if result.warnings:
        click.echo("\nWarning  Warnings:")
        rows = [[w.type, w.resource_id or w.file or '-', w.message] for w in result.warnings]
        click.echo(tabulate(rows, headers=['Type', 'Resource', 'Message'], tablefmt='grid'))


def _display_generation_result(result: GenerationResult, output_path: Optional[str]):
    metadata = result.metadata
    status = "Success Generation completed" if result.success else "Error Generation finished with errors"
    click.echo(f"\n{status} in {metadata.duration:.2f} seconds")
    click.echo(f"    Resources mapped: {metadata.mapped_count}/{metadata.filtered_count}")
    click.echo(f"    Resources rendered: {result.rendered_count}")
    click.echo(f"    Files generated: {metadata.file_count} ({metadata.total_lines} lines)")
    if metadata.written:
        click.echo(f"   Directory Output directory: {output_path}")

    rows = [[f.path, f.type, f.resource_count, f.size] for f in result.files]
    if rows:
        click.echo(tabulate(rows, headers=['File', 'Type', 'Resources', 'Bytes'], tablefmt='grid'))

    _display_generation_issues(result)


def _display_summary(summary: Dict[str, Any]):
    rows = [
        ['Discovered', summary['discovered']],
        ['Mapped', summary['mapped']],
        ['Rendered', summary['rendered']],
        ['Files', len(summary['files'])],
        ['Errors', len(summary['errors'])],
        ['Warnings', len(summary['warnings'])],
    ]
    click.echo("\n Run Summary:")
    click.echo(tabulate(rows, headers=['Metric', 'Count'], tablefmt='grid'))

    for error in summary['errors']:
        click.echo(f"   Error {error}", err=True)
    for warning in summary['warnings'][:20]:
        click.echo(f"   Warning  {warning}")

    if summary['success']:
        click.echo(f"\nSuccess Output directory: {summary['output_path']}" if not summary['dry_run']
                   else "\nSuccess Dry run completed")


def main():
    """Main entry point for the CLI"""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nWarning  Operation cancelled by user.")
        sys.exit(1)


if __name__ == '__main__':
    main()
