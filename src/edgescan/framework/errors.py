"""Exception hierarchy. Plug-in failures are never raised; they become PipelineError values."""


class EdgescanError(Exception):
    """Base class for errors raised by the framework itself."""


class RegistryError(EdgescanError):
    """The registry is structurally invalid; the only run-fatal condition."""


class ConfigError(EdgescanError):
    """Configuration is missing or invalid at startup."""


class PluginError(EdgescanError):
    """A configured plug-in cannot be imported or is not a valid plug-in class."""
