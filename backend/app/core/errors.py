"""Error taxonomy shared by the registry services and the admin API."""


class RegistryManagerError(Exception):
    """Base class for every error raised by the registry services."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConflictError(RegistryManagerError):
    """Duplicate name, sync already in progress, or delete with dependents."""

    status_code = 409


class NotFoundError(RegistryManagerError):
    """Registry, server instance or registry entry does not exist."""

    status_code = 404


class InvalidArgumentError(RegistryManagerError):
    """Malformed filter, missing attachment fields, bad duration."""

    status_code = 400


class ResolutionFailure(RegistryManagerError):
    """No endpoint could be derived for a registry."""

    status_code = 502


class FetchFailure(RegistryManagerError):
    """Network error, non-2xx response or timeout while fetching a listing."""

    status_code = 502


class InvalidEndpointError(FetchFailure):
    """Endpoint looks cluster-internal but does not match service DNS shape."""


class InvalidResponseError(RegistryManagerError):
    """Payload could not be parsed or had no recognized server list."""

    status_code = 502
