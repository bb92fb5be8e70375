#!/usr/bin/env python3
"""
IaC Renderers

Turn mapped resources, provider configurations, variables and outputs into
Terraform source text. Two formats are provided: native HCL (``terraform``),
rendered from jinja2 templates, and Terraform's JSON syntax (``terraform-json``).
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence, Tuple

from jinja2 import Template, TemplateError

from .errors import RenderError, SyntaxValidationError
from .mapping import MappedResource, Output, ProviderConfig, Variable

logger = logging.getLogger(__name__)

TERRAFORM_REQUIRED_VERSION = ">= 1.0"

_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_-]*$')
_FULL_INTERPOLATION = re.compile(r'^\$\{([^{}]+)\}$')


class IaCRenderer(ABC):
    """Renders IaC source text for one output format"""

    format_name = ""
    file_extension = ""
    description = ""

    @abstractmethod
    def generate_resource(self, resource: MappedResource) -> str:
        """Render one resource block, raising RenderError when it cannot be expressed"""

    @abstractmethod
    def generate_provider(self, config: ProviderConfig) -> str:
        pass

    @abstractmethod
    def generate_variables(self, variables: Dict[str, Variable]) -> str:
        pass

    @abstractmethod
    def generate_outputs(self, outputs: Dict[str, Output]) -> str:
        pass

    @abstractmethod
    def generate_versions(self, providers: Sequence[ProviderConfig]) -> str:
        pass

    @abstractmethod
    def generate_module_call(self, name: str, source: str, inputs: Dict[str, str] = None) -> str:
        pass

    @abstractmethod
    def assemble(self, blocks: Sequence[str], header: Sequence[str] = ()) -> str:
        """Join rendered blocks into file content, prefixed by header comment lines"""

    @abstractmethod
    def validate_syntax(self, content: str):
        """Raise SyntaxValidationError if content is not well-formed"""

    def capabilities(self) -> Dict[str, Any]:
        return {
            'format': self.format_name,
            'description': self.description,
            'file_extension': self.file_extension,
            'supports_modules': True,
            'supports_variables': True,
            'supports_outputs': True,
            'supports_provider_config': True,
            'supports_validation': True,
        }


def _escape_string(value: str) -> str:
    escaped = (value.replace('\\', '\\\\')
               .replace('"', '\\"')
               .replace('\n', '\\n')
               .replace('\r', '\\r')
               .replace('\t', '\\t'))
    # literal template sequences must not be evaluated
    return escaped.replace('${', '$${').replace('%{', '%%{')


def hcl_key(key: str) -> str:
    return key if _IDENTIFIER.match(key) else f'"{_escape_string(key)}"'


def hcl_value(value: Any, indent: int = 2) -> str:
    """Format a Python value as an HCL expression"""
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, str):
        match = _FULL_INTERPOLATION.match(value)
        if match:
            return match.group(1).strip()
        return f'"{_escape_string(value)}"'
    if isinstance(value, (list, tuple)):
        return '[' + ', '.join(hcl_value(item, indent) for item in value) + ']'
    if isinstance(value, dict):
        if not value:
            return '{}'
        pad = ' ' * (indent + 2)
        keys = sorted(value, key=str)
        width = max(len(hcl_key(str(k))) for k in keys)
        lines = [
            f"{pad}{hcl_key(str(k)).ljust(width)} = {hcl_value(value[k], indent + 2)}"
            for k in keys
        ]
        return '{\n' + '\n'.join(lines) + '\n' + ' ' * indent + '}'
    return f'"{_escape_string(str(value))}"'


def _interpolated_addresses(value: Any) -> List[str]:
    """Addresses referenced through full interpolations anywhere in a value"""
    found = []
    if isinstance(value, str):
        match = _FULL_INTERPOLATION.match(value)
        if match:
            found.append(match.group(1).strip())
    elif isinstance(value, (list, tuple)):
        for item in value:
            found.extend(_interpolated_addresses(item))
    elif isinstance(value, dict):
        for item in value.values():
            found.extend(_interpolated_addresses(item))
    return found


def implicit_dependencies(resource: MappedResource) -> List[str]:
    """Dependencies already expressed by interpolations in the configuration"""
    referenced = _interpolated_addresses(resource.configuration)
    return [dep for dep in resource.dependencies
            if any(ref == dep or ref.startswith(dep + '.') for ref in referenced)]


class TerraformRenderer(IaCRenderer):
    """Native Terraform HCL renderer"""

    format_name = "terraform"
    file_extension = ".tf"
    description = "Terraform HCL configuration"

    RESOURCE_TEMPLATE = """resource "{{ resource_type }}" "{{ resource_name }}" {
{% for key, value in attributes %}
  {{ key }} = {{ value }}
{% endfor %}
{% if depends_on %}

  depends_on = [{{ depends_on | join(', ') }}]
{% endif %}
}"""

    PROVIDER_TEMPLATE = """provider "{{ name }}" {
{% for key, value in attributes %}
  {{ key }} = {{ value }}
{% endfor %}
}"""

    VARIABLE_TEMPLATE = """variable "{{ name }}" {
{% if variable.description %}
  description = {{ description }}
{% endif %}
  type        = {{ variable.type }}
{% if has_default %}
  default     = {{ default }}
{% endif %}
{% if variable.sensitive %}
  sensitive   = true
{% endif %}
}"""

    OUTPUT_TEMPLATE = """output "{{ name }}" {
{% if output.description %}
  description = {{ description }}
{% endif %}
  value       = {{ value }}
{% if output.sensitive %}
  sensitive   = true
{% endif %}
}"""

    VERSIONS_TEMPLATE = """terraform {
  required_version = "{{ terraform_version }}"

  required_providers {
{% for provider in providers %}
    {{ provider.name }} = {
      source  = "{{ provider.source }}"
{% if provider.version %}
      version = "{{ provider.version }}"
{% endif %}
    }
{% endfor %}
  }
}"""

    MODULE_TEMPLATE = """module "{{ name }}" {
  source = "{{ source }}"
{% if inputs %}

{% for key, value in inputs %}
  {{ key }} = {{ value }}
{% endfor %}
{% endif %}
}"""

    def _render(self, text: str, **context) -> str:
        try:
            return Template(text, trim_blocks=True, lstrip_blocks=True).render(**context)
        except TemplateError as e:
            raise RenderError(f"Template rendering failed: {str(e)}") from e

    def generate_resource(self, resource: MappedResource) -> str:
        attributes = [(hcl_key(k), hcl_value(v)) for k, v in resource.configuration.items()]
        implicit = set(implicit_dependencies(resource))
        depends_on = [d for d in resource.dependencies if d not in implicit]
        return self._render(
            self.RESOURCE_TEMPLATE,
            resource_type=resource.resource_type,
            resource_name=resource.resource_name,
            attributes=attributes,
            depends_on=depends_on,
        )

    def generate_provider(self, config: ProviderConfig) -> str:
        attributes: List[Tuple[str, str]] = []
        if config.alias:
            attributes.append(('alias', hcl_value(config.alias)))
        for key, value in config.configuration.items():
            attributes.append((hcl_key(key), hcl_value(value)))
        return self._render(self.PROVIDER_TEMPLATE, name=config.name, attributes=attributes)

    def generate_variables(self, variables: Dict[str, Variable]) -> str:
        blocks = []
        for name in sorted(variables):
            variable = variables[name]
            blocks.append(self._render(
                self.VARIABLE_TEMPLATE,
                name=name,
                variable=variable,
                description=hcl_value(variable.description),
                has_default=not variable.required and variable.default is not None,
                default=hcl_value(variable.default),
            ))
        return '\n\n'.join(blocks)

    def generate_outputs(self, outputs: Dict[str, Output]) -> str:
        blocks = []
        for name in sorted(outputs):
            output = outputs[name]
            blocks.append(self._render(
                self.OUTPUT_TEMPLATE,
                name=name,
                output=output,
                description=hcl_value(output.description),
                value=hcl_value(output.value),
            ))
        return '\n\n'.join(blocks)

    def generate_versions(self, providers: Sequence[ProviderConfig]) -> str:
        unique = {}
        for provider in providers:
            unique.setdefault(provider.name, provider)
        return self._render(
            self.VERSIONS_TEMPLATE,
            terraform_version=TERRAFORM_REQUIRED_VERSION,
            providers=[unique[name] for name in sorted(unique)],
        )

    def generate_module_call(self, name: str, source: str, inputs: Dict[str, str] = None) -> str:
        pairs = [(hcl_key(k), hcl_value(v)) for k, v in sorted((inputs or {}).items())]
        return self._render(self.MODULE_TEMPLATE, name=name, source=source, inputs=pairs)

    def assemble(self, blocks: Sequence[str], header: Sequence[str] = ()) -> str:
        preamble = ''.join(f"# {line}\n" for line in header)
        if preamble:
            preamble += '\n'
        body = '\n\n'.join(b for b in blocks if b)
        return preamble + body + ('\n' if body else '')

    def validate_syntax(self, content: str):
        """Check that braces, brackets and strings are balanced"""
        closing = {'}': '{', ']': '[', ')': '('}
        stack: List[Tuple[str, int]] = []
        line = 1
        in_string = False
        i = 0
        while i < len(content):
            ch = content[i]
            if ch == '\n':
                if in_string:
                    raise SyntaxValidationError(f"Unterminated string on line {line}")
                line += 1
            elif in_string:
                if ch == '\\':
                    i += 1
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == '#' or content.startswith('//', i):
                end = content.find('\n', i)
                i = len(content) if end == -1 else end
                continue
            elif ch in '{[(':
                stack.append((ch, line))
            elif ch in closing:
                if not stack or stack[-1][0] != closing[ch]:
                    raise SyntaxValidationError(f"Unbalanced '{ch}' on line {line}")
                stack.pop()
            i += 1

        if in_string:
            raise SyntaxValidationError(f"Unterminated string on line {line}")
        if stack:
            ch, opened = stack[-1]
            raise SyntaxValidationError(f"Unclosed '{ch}' opened on line {opened}")


def _json_expression(value: Any) -> Any:
    """Terraform JSON keeps interpolations as ${...} strings"""
    if isinstance(value, dict):
        return {str(k): _json_expression(v) for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))}
    if isinstance(value, (list, tuple)):
        return [_json_expression(v) for v in value]
    return value


def _deep_merge(base: Dict[str, Any], update: Dict[str, Any]):
    for key, value in update.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        elif key in base and isinstance(base[key], list) and isinstance(value, list):
            base[key].extend(value)
        else:
            base[key] = value


class TerraformJSONRenderer(IaCRenderer):
    """Terraform JSON syntax renderer (``.tf.json`` files)"""

    format_name = "terraform-json"
    file_extension = ".tf.json"
    description = "Terraform JSON configuration syntax"

    def _dump(self, data: Dict[str, Any]) -> str:
        try:
            return json.dumps(data, indent=2)
        except (TypeError, ValueError) as e:
            raise RenderError(f"Value cannot be expressed as Terraform JSON: {str(e)}") from e

    def generate_resource(self, resource: MappedResource) -> str:
        body = {k: _json_expression(v) for k, v in resource.configuration.items()}
        if isinstance(body.get('provider'), str):
            # meta-argument takes a bare provider reference
            body['provider'] = body['provider'].strip('${}')
        implicit = set(implicit_dependencies(resource))
        depends_on = [d for d in resource.dependencies if d not in implicit]
        if depends_on:
            body['depends_on'] = depends_on
        return self._dump({'resource': {resource.resource_type: {resource.resource_name: body}}})

    def generate_provider(self, config: ProviderConfig) -> str:
        body = {}
        if config.alias:
            body['alias'] = config.alias
        body.update(_json_expression(config.configuration))
        return self._dump({'provider': {config.name: [body]}})

    def generate_variables(self, variables: Dict[str, Variable]) -> str:
        if not variables:
            return ''
        blocks = {}
        for name in sorted(variables):
            variable = variables[name]
            body: Dict[str, Any] = {'type': variable.type}
            if variable.description:
                body['description'] = variable.description
            if not variable.required and variable.default is not None:
                body['default'] = variable.default
            if variable.sensitive:
                body['sensitive'] = True
            blocks[name] = body
        return self._dump({'variable': blocks})

    def generate_outputs(self, outputs: Dict[str, Output]) -> str:
        if not outputs:
            return ''
        blocks = {}
        for name in sorted(outputs):
            output = outputs[name]
            body: Dict[str, Any] = {'value': output.value}
            if output.description:
                body['description'] = output.description
            if output.sensitive:
                body['sensitive'] = True
            blocks[name] = body
        return self._dump({'output': blocks})

    def generate_versions(self, providers: Sequence[ProviderConfig]) -> str:
        required = {}
        for provider in sorted(providers, key=lambda p: p.name):
            entry = {'source': provider.source}
            if provider.version:
                entry['version'] = provider.version
            required.setdefault(provider.name, entry)
        return self._dump({'terraform': {
            'required_version': TERRAFORM_REQUIRED_VERSION,
            'required_providers': required,
        }})

    def generate_module_call(self, name: str, source: str, inputs: Dict[str, str] = None) -> str:
        body = {'source': source}
        body.update(sorted((inputs or {}).items()))
        return self._dump({'module': {name: body}})

    def assemble(self, blocks: Sequence[str], header: Sequence[str] = ()) -> str:
        merged: Dict[str, Any] = {}
        if header:
            merged['//'] = ' | '.join(header)
        for block in blocks:
            if block:
                _deep_merge(merged, json.loads(block))
        return self._dump(merged) + '\n'

    def validate_syntax(self, content: str):
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise SyntaxValidationError(f"Invalid JSON on line {e.lineno}: {e.msg}")
        if not isinstance(data, dict):
            raise SyntaxValidationError("Terraform JSON must be an object at the top level")


def default_renderers() -> List[IaCRenderer]:
    return [TerraformRenderer(), TerraformJSONRenderer()]
