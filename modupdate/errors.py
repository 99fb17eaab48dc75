from __future__ import annotations


class ModUpdateError(RuntimeError):
    """Base class for update check and apply failures."""


class RegistryError(ModUpdateError):
    """Raised when a registry lookup cannot produce usable results."""


class NetworkError(RegistryError):
    """Transport failure, timeout or non-2xx response."""


class ParseError(RegistryError):
    """Malformed JSON or a payload missing required fields."""


class UpdateError(ModUpdateError):
    """Raised when a single candidate cannot be downloaded or swapped in."""


class OperationCancelled(ModUpdateError):
    pass
