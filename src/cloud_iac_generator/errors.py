#!/usr/bin/env python3
"""
Exception Taxonomy

Fatal errors (bad options, bad configuration, nothing usable produced) are raised.
Everything else is recorded on the DiscoveryResult / GenerationResult and the
exceptions below only travel between a collaborator and the engine that records them.
"""

from typing import Any, Optional


class CloudIacError(Exception):
    """Base class for all errors raised by the tool"""


class InvalidOptionsError(CloudIacError, ValueError):
    """Options were rejected before any work started"""


class ConfigError(CloudIacError, ValueError):
    """Configuration failed validation"""


class ConnectorError(CloudIacError):
    """A provider connector failed (credentials or API)"""

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class MappingError(CloudIacError):
    """A resource could not be mapped to a target resource"""

    def __init__(self, message: str, resource_id: str = "", resource_type: str = ""):
        super().__init__(message)
        self.resource_id = resource_id
        self.resource_type = resource_type


class UnsupportedResourceTypeError(MappingError):
    """The mapper has no strategy registered for the resource type"""


class DependencyError(CloudIacError):
    """Dependency analysis found a problem or could not run"""


class RenderError(CloudIacError):
    """The renderer failed to produce text for a file"""


class SyntaxValidationError(CloudIacError):
    """Generated content failed the renderer's syntax check"""


class NoResourcesMappedError(CloudIacError):
    """Generation produced nothing: zero resources survived mapping"""

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class DiscoveryTimeoutError(CloudIacError):
    """The discovery deadline passed before any provider returned"""

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class GenerationTimeoutError(CloudIacError):
    """Generation ran past its deadline; carries the partial GenerationResult"""

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result
