"""Exception hierarchy for the workflow execution pipeline.

Every failure raised by :mod:`comfyproxy.core` derives from
:class:`ProxyError` so the API layer can turn it into a single server error
response.  The subclasses only differ in where the failure came from:

- :class:`ConfigurationError` - a required setting is missing or invalid.
- :class:`TransportError` - the network call itself failed.
- :class:`ProtocolError` - the remote side answered, but not as expected.
- :class:`TemplateError` - the resolved workflow is not valid JSON.
- :class:`CompletionTimeoutError` - the engine never reported completion.
"""


class ProxyError(Exception):
    """Base class for all pipeline failures."""


class ConfigurationError(ProxyError):
    """A required configuration value is missing or invalid."""


class TransportError(ProxyError):
    """A network, DNS or timeout failure on an outbound call."""


class ProtocolError(ProxyError):
    """A non-success status or a missing field in a remote response."""


class TemplateError(ProtocolError):
    """The substituted workflow could not be parsed back into JSON."""


class CompletionTimeoutError(ProxyError):
    """The completion wait exceeded its deadline."""
