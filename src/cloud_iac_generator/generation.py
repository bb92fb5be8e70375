#!/usr/bin/env python3
"""
Generation Engine

Turns a discovered resource inventory into Terraform files. The pipeline runs
in a fixed order: validate options, filter, map, resolve dependencies,
organize, render, aggregate variables/outputs, checksum, write and validate.

Per-resource and per-file problems are recorded on the GenerationResult as
errors or warnings; only invalid options, an empty mapping and a blown
deadline are raised.
"""

import hashlib
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import GenerationEngineConfig
from .dependencies import DependencyResolver
from .errors import (
    GenerationTimeoutError,
    InvalidOptionsError,
    MappingError,
    NoResourcesMappedError,
    SyntaxValidationError,
    UnsupportedResourceTypeError,
)
from .mapping import MappedResource, Output, ProviderConfig, ResourceMapper, Variable
from .models import CloudProvider, Resource
from .organizer import PATTERNS, FileOrganizer, normalize_name
from .renderer import IaCRenderer, default_renderers

logger = logging.getLogger(__name__)

# File types
FILE_MAIN = 'main'
FILE_VARIABLES = 'variables'
FILE_OUTPUTS = 'outputs'
FILE_PROVIDER = 'provider'
FILE_VERSIONS = 'versions'
FILE_MODULE = 'module'

SEVERITIES = ('low', 'medium', 'high', 'critical')
WARNING_TYPES = ('deprecated', 'incomplete', 'unsupported', 'manual_action', 'security_risk',
                 'performance_risk', 'best_practice', 'dependency', 'validation')

ESTIMATED_RESOURCE_SIZE = 200
ESTIMATED_PROVIDER_FILE_SIZE = 500


@dataclass
class GenerationOptions:
    """Inputs of one generate or preview call"""
    resources: List[Resource] = field(default_factory=list)
    format: Optional[str] = None
    output_path: Optional[str] = None
    organization: Optional[str] = None
    organize_by_type: bool = False
    organize_by_region: bool = False
    single_file: bool = False
    include_provider: Optional[bool] = None
    provider_version: Optional[str] = None
    generate_modules: bool = False
    module_structure: Optional[str] = None
    include_resources: List[str] = field(default_factory=list)
    exclude_resources: List[str] = field(default_factory=list)
    validate_output: Optional[bool] = None
    force: bool = False
    timestamp: Optional[datetime] = None
    timeout: Optional[float] = None  # seconds


@dataclass(frozen=True)
class GeneratedFile:
    path: str
    content: str
    type: str
    format: str
    size: int
    resource_count: int
    checksum: str

    @property
    def line_count(self) -> int:
        return self.content.count('\n')


@dataclass(frozen=True)
class GenerationError:
    message: str
    severity: str = 'medium'
    resource_id: str = ""
    resource_type: str = ""
    provider: str = ""
    file: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v}


@dataclass(frozen=True)
class GenerationWarning:
    message: str
    type: str = 'validation'
    resource_id: str = ""
    resource_type: str = ""
    provider: str = ""
    file: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v}


@dataclass(frozen=True)
class GenerationMetadata:
    start_time: datetime
    end_time: datetime
    duration: float
    format: str
    organization: str
    resource_count: int
    filtered_count: int
    mapped_count: int
    file_count: int
    total_lines: int
    total_size: int
    provider_stats: Dict[str, int] = field(default_factory=dict)
    error_count: int = 0
    warning_count: int = 0
    written: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.__dict__)
        data['start_time'] = self.start_time.isoformat()
        data['end_time'] = self.end_time.isoformat()
        return data


@dataclass(frozen=True)
class GenerationResult:
    files: List[GeneratedFile]
    errors: List[GenerationError]
    warnings: List[GenerationWarning]
    metadata: GenerationMetadata
    mapped_resources: List[MappedResource] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.mapped_resources) and not any(e.severity == 'critical' for e in self.errors)

    @property
    def rendered_count(self) -> int:
        """Resources that made it into a top-level main file"""
        return sum(f.resource_count for f in self.files if f.type == FILE_MAIN)

    def get_file(self, path: str) -> Optional[GeneratedFile]:
        for generated in self.files:
            if generated.path == path:
                return generated
        return None


@dataclass(frozen=True)
class GenerationPreview:
    format: str
    organization: str
    resource_count: int
    mappable_count: int
    files: List[Dict[str, Any]]
    unsupported: List[Dict[str, str]]
    providers: List[str]
    estimated_size: int


class _Run:
    """Mutable state of one generate call; never handed to callers"""

    def __init__(self, deadline: float, timeout: float):
        self.deadline = deadline
        self.timeout = timeout
        self.errors: List[GenerationError] = []
        self.warnings: List[GenerationWarning] = []
        self.files: List[GeneratedFile] = []


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


class GenerationEngine:
    """
    Generates IaC files from discovered resources

    Mappers and renderers must be registered before generate() is called and
    are treated as read-only afterwards.
    """

    def __init__(self,
                 config: Optional[GenerationEngineConfig] = None,
                 renderers: Optional[Sequence[IaCRenderer]] = None,
                 resolver: Optional[DependencyResolver] = None,
                 organizer: Optional[FileOrganizer] = None,
                 logger: Optional[logging.Logger] = None):
        self.config = config or GenerationEngineConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.resolver = resolver or DependencyResolver(self.logger)
        self.organizer = organizer or FileOrganizer(self.logger)

        self._mappers: Dict[CloudProvider, ResourceMapper] = {}
        self._renderers: Dict[str, IaCRenderer] = {}
        for renderer in (default_renderers() if renderers is None else renderers):
            self.register_renderer(renderer)

    def register_mapper(self, mapper: ResourceMapper):
        self._mappers[mapper.provider] = mapper
        self.logger.info(f"Registered mapper for provider: {mapper.provider.value}")

    def register_renderer(self, renderer: IaCRenderer):
        self._renderers[renderer.format_name] = renderer
        self.logger.debug(f"Registered renderer for format: {renderer.format_name}")

    def list_formats(self) -> List[str]:
        return sorted(self._renderers)

    def get_format_capabilities(self, format_name: str) -> Dict[str, Any]:
        renderer = self._renderers.get(format_name)
        if renderer is None:
            raise InvalidOptionsError(f"Unsupported format: {format_name}")
        capabilities = renderer.capabilities()
        capabilities['organization_patterns'] = list(PATTERNS)
        capabilities['providers'] = {
            provider.value: mapper.get_supported_types()
            for provider, mapper in sorted(self._mappers.items(), key=lambda kv: kv[0].value)
        }
        return capabilities

    # Options

    def _resolve_format(self, options: GenerationOptions) -> str:
        return options.format or self.config.default_format

    def _resolve_organization(self, options: GenerationOptions) -> str:
        if options.single_file:
            return 'flat'
        if options.organize_by_type:
            return 'by_resource_type'
        if options.organize_by_region:
            return 'by_region'
        return options.organization or self.config.default_organization

    def validate_options(self, options: GenerationOptions):
        if not options.resources:
            raise InvalidOptionsError("No resources provided for generation")

        format_name = self._resolve_format(options)
        if not format_name:
            raise InvalidOptionsError("Output format must be specified")
        if format_name not in self._renderers:
            raise InvalidOptionsError(
                f"Unsupported format: {format_name} (available: {', '.join(self.list_formats())})")

        if options.organization and options.organization not in PATTERNS:
            raise InvalidOptionsError(f"Unknown organization pattern: {options.organization}")
        if options.module_structure and options.module_structure not in PATTERNS:
            raise InvalidOptionsError(f"Unknown module structure: {options.module_structure}")

        if options.single_file and options.organize_by_type:
            raise InvalidOptionsError("single_file and organize_by_type cannot be used together")
        if options.single_file and options.organize_by_region:
            raise InvalidOptionsError("single_file and organize_by_region cannot be used together")
        if options.organize_by_type and options.organize_by_region:
            raise InvalidOptionsError("organize_by_type and organize_by_region cannot be used together")

        if options.timeout is not None and options.timeout <= 0:
            raise InvalidOptionsError(f"timeout must be positive, got {options.timeout}")

    # Pipeline stages

    def _filter_resources(self, resources: Sequence[Resource], include: Sequence[str],
                          exclude: Sequence[str]) -> List[Resource]:
        def hit(resource: Resource, needles: Sequence[str]) -> bool:
            return any(n in resource.type or n in resource.id for n in needles)

        kept = []
        for resource in resources:
            if exclude and hit(resource, exclude):
                continue
            if include and not hit(resource, include):
                continue
            kept.append(resource)

        if len(kept) != len(resources):
            self.logger.info(f"Resource filters kept {len(kept)} of {len(resources)} resources")
        return kept

    def _map_resources(self, resources: List[Resource], run: _Run) -> List[MappedResource]:
        mapped: List[MappedResource] = []
        for resource in resources:
            mapper = self._mappers.get(resource.provider)
            if mapper is None:
                run.errors.append(GenerationError(
                    message=f"No mapper registered for provider: {resource.provider.value}",
                    severity='high',
                    resource_id=resource.id,
                    resource_type=resource.type,
                    provider=resource.provider.value,
                ))
                continue

            try:
                result = mapper.map_resource(resource, resources)
            except UnsupportedResourceTypeError as e:
                self.logger.warning(f"Skipping {resource.id}: {str(e)}")
                run.errors.append(GenerationError(
                    message=str(e),
                    severity='high',
                    resource_id=resource.id,
                    resource_type=resource.type,
                    provider=resource.provider.value,
                ))
                continue
            except Exception as e:
                self.logger.error(f"Failed to map {resource.id}: {str(e)}")
                run.errors.append(GenerationError(
                    message=f"Mapping failed: {str(e)}",
                    severity='medium',
                    resource_id=resource.id,
                    resource_type=resource.type,
                    provider=resource.provider.value,
                ))
                continue

            try:
                mapper.validate_mapping(resource, result)
            except MappingError as e:
                run.warnings.append(GenerationWarning(
                    message=f"Mapping validation failed: {str(e)}",
                    type='validation',
                    resource_id=resource.id,
                    resource_type=resource.type,
                    provider=resource.provider.value,
                ))

            mapped.append(result)

        self.logger.info(f"Mapped {len(mapped)} of {len(resources)} resources")
        return mapped

    def _drop_duplicate_addresses(self, mapped: List[MappedResource], run: _Run) -> List[MappedResource]:
        """Keep the first resource per address; later ones become errors"""
        kept: List[MappedResource] = []
        owner: Dict[str, str] = {}
        for m in mapped:
            if m.address in owner:
                self.logger.warning(f"Dropping {m.original_resource.id}: address {m.address} "
                                    f"already used by {owner[m.address]}")
                run.errors.append(GenerationError(
                    message=f"Duplicate resource address {m.address} (already used by {owner[m.address]})",
                    severity='medium',
                    resource_id=m.original_resource.id,
                    resource_type=m.resource_type,
                    provider=m.provider.value,
                ))
                continue
            owner[m.address] = m.original_resource.id
            kept.append(m)
        return kept

    def _resolve_dependencies(self, mapped: List[MappedResource], run: _Run) -> List[MappedResource]:
        """Merge metadata-derived edges into mapper-declared ones and report problems"""
        address_of = {m.original_resource.id: m.address for m in mapped}
        addresses = set(address_of.values())

        edges = self.resolver.analyze_dependencies([m.original_resource for m in mapped])

        resolved: List[MappedResource] = []
        for m in mapped:
            dependencies = list(m.dependencies)
            for target_id in edges.get(m.original_resource.id, []):
                address = address_of.get(target_id)
                if address and address != m.address and address not in dependencies:
                    dependencies.append(address)

            for dep in dependencies:
                if dep not in addresses:
                    run.warnings.append(GenerationWarning(
                        message=f"{m.address} depends on {dep}, which is not part of this generation",
                        type='dependency',
                        resource_id=m.original_resource.id,
                        resource_type=m.resource_type,
                        provider=m.provider.value,
                    ))

            resolved.append(m if dependencies == m.dependencies else replace(m, dependencies=dependencies))

        graph = {m.address: [d for d in m.dependencies if d in addresses] for m in resolved}
        for cycle in self.resolver.find_cycles(graph):
            run.warnings.append(GenerationWarning(
                message=f"Dependency cycle detected: {' -> '.join(cycle + [cycle[0]])}",
                type='dependency',
            ))

        return resolved

    def _provider_configs(self, mapped: List[MappedResource], options: GenerationOptions
                          ) -> Tuple[List[ProviderConfig], Dict[Tuple[str, str], str]]:
        """
        One provider configuration per (provider, region) actually used

        Regions are compared after the mapper resolves them, so an empty region
        and the mapper's default region share one configuration. The first
        region of each provider is the default configuration; further regions
        get an alias. Returns the configs and a (provider, raw region) -> alias
        map for the aliased ones.
        """
        by_combo: Dict[Tuple[CloudProvider, str], List[Resource]] = {}
        for m in mapped:
            key = (m.provider, m.original_resource.region)
            by_combo.setdefault(key, []).append(m.original_resource)

        resolved: Dict[Tuple[CloudProvider, str], ProviderConfig] = {}
        aliases: Dict[Tuple[str, str], str] = {}
        defaulted = set()
        for provider, region in sorted(by_combo, key=lambda k: (k[0].value, k[1])):
            mapper = self._mappers[provider]
            config = mapper.get_provider_config(by_combo[(provider, region)])
            key = (provider, config.region or region)
            if key in resolved:
                config = resolved[key]
            else:
                if options.provider_version:
                    config = replace(config, version=options.provider_version)
                if provider in defaulted:
                    config = replace(config, alias=normalize_name(config.region or region) or 'secondary')
                defaulted.add(provider)
                resolved[key] = config
            if config.alias:
                aliases[(provider.value, region)] = config.alias
        return list(resolved.values()), aliases

    @staticmethod
    def _bind_alias(m: MappedResource, aliases: Dict[Tuple[str, str], str]) -> MappedResource:
        """Point a resource in a non-default region at its aliased provider"""
        alias = aliases.get((m.provider.value, m.original_resource.region))
        if not alias:
            return m
        configuration = {'provider': "${" + f"{m.provider.value}.{alias}" + "}"}
        configuration.update(m.configuration)
        return replace(m, configuration=configuration)

    @staticmethod
    def _provider_path(config: ProviderConfig, ext: str) -> str:
        return f"provider_{config.name}_{normalize_name(config.region) or 'default'}{ext}"

    def _make_file(self, renderer: IaCRenderer, path: str, file_type: str, blocks: List[str],
                   header: List[str], resource_count: int) -> GeneratedFile:
        content = renderer.assemble(blocks, header)
        return GeneratedFile(
            path=path,
            content=content,
            type=file_type,
            format=renderer.format_name,
            size=len(content.encode('utf-8')),
            resource_count=resource_count,
            checksum=_sha256(renderer.assemble(blocks)),
        )

    def _render_resources(self, renderer: IaCRenderer, path: str, members: List[MappedResource],
                          run: _Run) -> Tuple[List[str], List[MappedResource]]:
        """Render each member; returns the blocks and the members that rendered"""
        blocks = []
        rendered = []
        for m in members:
            try:
                blocks.append(renderer.generate_resource(m))
                rendered.append(m)
            except Exception as e:
                self.logger.error(f"Failed to render {m.address} into {path}: {str(e)}")
                run.errors.append(GenerationError(
                    message=f"Render failed: {str(e)}",
                    severity='medium',
                    resource_id=m.original_resource.id,
                    resource_type=m.resource_type,
                    provider=m.provider.value,
                    file=path,
                ))
        return blocks, rendered

    def _render_block(self, path: str, run: _Run, func, *args) -> str:
        try:
            return func(*args)
        except Exception as e:
            self.logger.error(f"Failed to render {path}: {str(e)}")
            run.errors.append(GenerationError(message=f"Render failed: {str(e)}", severity='high', file=path))
            return ''

    @staticmethod
    def _aggregate(mapped: Sequence[MappedResource]) -> Tuple[Dict[str, Variable], Dict[str, Output]]:
        variables: Dict[str, Variable] = {}
        outputs: Dict[str, Output] = {}
        for m in mapped:
            for name, variable in m.variables.items():
                existing = variables.get(name)
                if existing is None or (variable.required and not existing.required):
                    variables[name] = variable
            for name, output in m.outputs.items():
                outputs.setdefault(name, output)
        return variables, outputs

    def _render_files(self, renderer: IaCRenderer, groups: Dict[str, List[MappedResource]],
                      options: GenerationOptions, header: List[str], run: _Run):
        ext = renderer.file_extension
        rendered_all: List[MappedResource] = []

        if options.generate_modules:
            module_group_of = {m.address: name for name, members in groups.items() for m in members}
            root_blocks = []
            root_outputs: Dict[str, Output] = {}
            module_resources = 0
            for name, members in groups.items():
                base = f"modules/{name}"
                for m in members:
                    for dep in m.dependencies:
                        other = module_group_of.get(dep)
                        if other and other != name:
                            run.warnings.append(GenerationWarning(
                                message=f"{m.address} in module {name} references {dep} in module {other}; "
                                        f"wire it through module outputs",
                                type='manual_action',
                                resource_id=m.original_resource.id,
                                resource_type=m.resource_type,
                                provider=m.provider.value,
                                file=f"{base}/main{ext}",
                            ))

                blocks, rendered = self._render_resources(renderer, f"{base}/main{ext}", members, run)
                if not blocks:
                    continue
                run.files.append(self._make_file(renderer, f"{base}/main{ext}", FILE_MODULE, blocks, header,
                                                 len(rendered)))
                module_resources += len(rendered)
                rendered_all.extend(rendered)

                group_vars, group_outputs = self._aggregate(rendered)
                if group_vars:
                    block = self._render_block(f"{base}/variables{ext}", run, renderer.generate_variables, group_vars)
                    if block:
                        run.files.append(self._make_file(renderer, f"{base}/variables{ext}", FILE_MODULE,
                                                         [block], header, 0))
                if group_outputs:
                    block = self._render_block(f"{base}/outputs{ext}", run, renderer.generate_outputs, group_outputs)
                    if block:
                        run.files.append(self._make_file(renderer, f"{base}/outputs{ext}", FILE_MODULE,
                                                         [block], header, 0))
                for output_name, output in group_outputs.items():
                    root_outputs[output_name] = Output(
                        value="${" + f"module.{name}.{output_name}" + "}",
                        description=output.description,
                        sensitive=output.sensitive,
                    )

                inputs = {var: "${" + f"var.{var}" + "}" for var in group_vars}
                root_blocks.append(self._render_block(f"main{ext}", run, renderer.generate_module_call,
                                                      name, f"./{base}", inputs))

            if root_blocks:
                run.files.append(self._make_file(renderer, f"main{ext}", FILE_MAIN, root_blocks, header,
                                                 module_resources))
            variables, _ = self._aggregate(rendered_all)
            outputs = root_outputs
        else:
            for path, members in groups.items():
                blocks, rendered = self._render_resources(renderer, path, members, run)
                if blocks:
                    run.files.append(self._make_file(renderer, path, FILE_MAIN, blocks, header, len(rendered)))
                    rendered_all.extend(rendered)
            variables, outputs = self._aggregate(rendered_all)

        if variables:
            block = self._render_block(f"variables{ext}", run, renderer.generate_variables, variables)
            if block:
                run.files.append(self._make_file(renderer, f"variables{ext}", FILE_VARIABLES, [block], header, 0))
        if outputs:
            block = self._render_block(f"outputs{ext}", run, renderer.generate_outputs, outputs)
            if block:
                run.files.append(self._make_file(renderer, f"outputs{ext}", FILE_OUTPUTS, [block], header, 0))

    def _render_providers(self, renderer: IaCRenderer, configs: List[ProviderConfig],
                          header: List[str], run: _Run):
        ext = renderer.file_extension
        block = self._render_block(f"versions{ext}", run, renderer.generate_versions, configs)
        if block:
            run.files.append(self._make_file(renderer, f"versions{ext}", FILE_VERSIONS, [block], header, 0))

        for config in configs:
            path = self._provider_path(config, ext)
            block = self._render_block(path, run, renderer.generate_provider, config)
            if block:
                run.files.append(self._make_file(renderer, path, FILE_PROVIDER, [block], header, 0))

    def _write_files(self, output_path: str, files: List[GeneratedFile], force: bool, run: _Run) -> bool:
        root = Path(output_path).expanduser()

        if not force:
            existing = [f.path for f in files if (root / f.path).exists()]
            if existing:
                run.errors.append(GenerationError(
                    message=f"Refusing to overwrite existing files in {root}: {', '.join(existing)} "
                            f"(use force to overwrite)",
                    severity='critical',
                ))
                self.logger.error(f"Output files already exist in {root}; nothing written")
                return False

        written = True
        for generated in files:
            target = root / generated.path
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with open(target, 'w', encoding='utf-8') as f:
                    f.write(generated.content)
                self.logger.debug(f"Wrote {target}")
            except OSError as e:
                written = False
                self.logger.error(f"Failed to write {target}: {str(e)}")
                run.errors.append(GenerationError(
                    message=f"Failed to write file: {str(e)}",
                    severity='critical',
                    file=generated.path,
                ))
        self.logger.info(f"Wrote {len(files)} files to {root}")
        return written

    def _validate_files(self, renderer: IaCRenderer, files: List[GeneratedFile], run: _Run):
        for generated in files:
            try:
                renderer.validate_syntax(generated.content)
            except SyntaxValidationError as e:
                self.logger.warning(f"Validation failed for {generated.path}: {str(e)}")
                run.warnings.append(GenerationWarning(
                    message=f"Syntax validation failed: {str(e)}",
                    type='validation',
                    file=generated.path,
                ))

    def _build_result(self, run: _Run, options: GenerationOptions, start_time: datetime, started: float,
                      filtered_count: int, mapped: List[MappedResource], written: bool) -> GenerationResult:
        provider_stats: Dict[str, int] = {}
        for m in mapped:
            provider_stats[m.provider.value] = provider_stats.get(m.provider.value, 0) + 1

        metadata = GenerationMetadata(
            start_time=start_time,
            end_time=datetime.now(timezone.utc),
            duration=time.monotonic() - started,
            format=self._resolve_format(options),
            organization=self._resolve_organization(options),
            resource_count=len(options.resources),
            filtered_count=filtered_count,
            mapped_count=len(mapped),
            file_count=len(run.files),
            total_lines=sum(f.line_count for f in run.files),
            total_size=sum(f.size for f in run.files),
            provider_stats=provider_stats,
            error_count=len(run.errors),
            warning_count=len(run.warnings),
            written=written,
        )
        return GenerationResult(
            files=list(run.files),
            errors=list(run.errors),
            warnings=list(run.warnings),
            metadata=metadata,
            mapped_resources=list(mapped),
        )

    def generate(self, options: GenerationOptions) -> GenerationResult:
        """
        Generate IaC files for the given resources

        Raises:
            InvalidOptionsError: options rejected before any work started
            NoResourcesMappedError: no resource survived mapping
            GenerationTimeoutError: the deadline passed; nothing is written
        """
        self.validate_options(options)

        start_time = datetime.now(timezone.utc)
        started = time.monotonic()
        timeout = options.timeout or self.config.timeout
        run = _Run(deadline=started + timeout, timeout=timeout)

        renderer = self._renderers[self._resolve_format(options)]
        organization = self._resolve_organization(options)
        include_provider = self.config.include_provider if options.include_provider is None \
            else options.include_provider
        validate_output = self.config.validate_output if options.validate_output is None \
            else options.validate_output

        stamp = options.timestamp or start_time.replace(microsecond=0)
        header = [f"Generated by {self.config.generator_name}", f"Generated at: {stamp.isoformat()}"]

        self.logger.info(f"Starting generation of {len(options.resources)} resources "
                         f"as {renderer.format_name}, organized {organization}")

        filtered = self._filter_resources(options.resources, options.include_resources, options.exclude_resources)
        mapped = self._drop_duplicate_addresses(self._map_resources(filtered, run), run)
        if not mapped:
            result = self._build_result(run, options, start_time, started, len(filtered), mapped, False)
            raise NoResourcesMappedError("no resources could be mapped for generation", result=result)

        def check_deadline(stage: str):
            if time.monotonic() > run.deadline:
                raise GenerationTimeoutError(
                    f"Generation exceeded its {timeout}s deadline during {stage}",
                    result=self._build_result(run, options, start_time, started, len(filtered), mapped, False)
                )

        check_deadline("mapping")

        try:
            mapped = self._resolve_dependencies(mapped, run)
        except Exception as e:
            self.logger.warning(f"Dependency analysis failed: {str(e)}")
            run.warnings.append(GenerationWarning(message=f"Dependency analysis failed: {str(e)}",
                                                  type='dependency'))

        configs: List[ProviderConfig] = []
        if include_provider:
            configs, aliases = self._provider_configs(mapped, options)
            if aliases:
                mapped = [self._bind_alias(m, aliases) for m in mapped]

        pattern = options.module_structure if options.generate_modules and options.module_structure \
            else organization
        if options.generate_modules:
            groups = self.organizer.organize(mapped, pattern)
        else:
            groups = self.organizer.organize_files(mapped, pattern, renderer.file_extension)

        self._render_files(renderer, groups, options, header, run)
        if include_provider:
            self._render_providers(renderer, configs, header, run)
        check_deadline("rendering")

        written = False
        if options.output_path:
            written = self._write_files(options.output_path, run.files, options.force, run)

        if validate_output:
            self._validate_files(renderer, run.files, run)

        result = self._build_result(run, options, start_time, started, len(filtered), mapped, written)
        self.logger.info(f"Generation completed: {result.metadata.file_count} files, "
                         f"{result.metadata.mapped_count} resources, {result.metadata.error_count} errors, "
                         f"{result.metadata.warning_count} warnings")
        return result

    def preview(self, options: GenerationOptions) -> GenerationPreview:
        """Estimate the generated file set without rendering or writing anything"""
        self.validate_options(options)

        renderer = self._renderers[self._resolve_format(options)]
        organization = self._resolve_organization(options)
        include_provider = self.config.include_provider if options.include_provider is None \
            else options.include_provider

        filtered = self._filter_resources(options.resources, options.include_resources, options.exclude_resources)
        mapped: List[MappedResource] = []
        unsupported: List[Dict[str, str]] = []

        for resource in filtered:
            item = {'resource_id': resource.id, 'type': resource.type, 'provider': resource.provider.value}
            mapper = self._mappers.get(resource.provider)
            if mapper is None:
                item['reason'] = f"No mapper registered for provider {resource.provider.value}"
                item['suggestion'] = "Register a mapper for this provider or exclude its resources"
                unsupported.append(item)
                continue
            if resource.type not in mapper.get_supported_types():
                item['reason'] = f"Resource type {resource.type} is not supported"
                item['suggestion'] = f"Supported types: {', '.join(mapper.get_supported_types())}"
                unsupported.append(item)
                continue
            try:
                mapped.append(mapper.map_resource(resource, filtered))
            except MappingError as e:
                item['reason'] = str(e)
                item['suggestion'] = "Check the discovered metadata for this resource"
                unsupported.append(item)

        pattern = options.module_structure if options.generate_modules and options.module_structure \
            else organization
        files = []
        for path, members in self.organizer.organize_files(mapped, pattern, renderer.file_extension).items():
            if options.generate_modules:
                path = f"modules/{path[:-len(renderer.file_extension)]}/main{renderer.file_extension}"
            files.append({
                'path': path,
                'type': FILE_MODULE if options.generate_modules else FILE_MAIN,
                'resource_count': len(members),
                'estimated_size': len(members) * ESTIMATED_RESOURCE_SIZE,
            })

        providers = sorted({m.provider.value for m in mapped})
        if include_provider and mapped:
            files.append({
                'path': f"versions{renderer.file_extension}",
                'type': FILE_VERSIONS,
                'resource_count': 0,
                'estimated_size': ESTIMATED_PROVIDER_FILE_SIZE,
            })
            configs, _ = self._provider_configs(mapped, options)
            for config in configs:
                files.append({
                    'path': self._provider_path(config, renderer.file_extension),
                    'type': FILE_PROVIDER,
                    'resource_count': 0,
                    'estimated_size': ESTIMATED_PROVIDER_FILE_SIZE,
                })

        return GenerationPreview(
            format=renderer.format_name,
            organization=pattern,
            resource_count=len(filtered),
            mappable_count=len(mapped),
            files=files,
            unsupported=unsupported,
            providers=providers,
            estimated_size=sum(f['estimated_size'] for f in files),
        )
