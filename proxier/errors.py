"""Exception types raised by the proxier."""


class ProxierError(Exception):
    """Base class for proxier errors."""


class SetupError(ProxierError):
    """Construction of a dependent subsystem failed; nothing was started."""


class NotRunningError(ProxierError):
    """A query was made before the proxier finished its setup phase."""

    def __init__(self, message="proxier not running"):
        super().__init__(message)


class ResolutionError(ProxierError):
    """Endpoint lookup for a headless service failed."""

    def __init__(self, namespace, name, reason):
        self.namespace = namespace
        self.name = name
        self.reason = reason
        super().__init__(f"failed to resolve endpoints for {namespace}/{name}: {reason}")


class TransportError(ProxierError):
    """A tunnel could not be opened."""
