"""Exception hierarchy for binding composition and application lifecycle.

Exception Hierarchy:
    CaskError: Base exception for all Cask errors
    ├── ResolutionError: A binding could not be turned into a value
    │   ├── BindingNotFoundError: No binding registered under a key
    │   ├── CircularDependencyError: Resolution cycle detected
    │   └── AsyncResolutionError: Sync resolution of an async value
    ├── ConfigurationError: Malformed binding or component artifact
    ├── InjectionError: Constructor parameter injection failed
    └── LifecycleError: Several servers failed in one lifecycle phase

Example:
    >>> try:
    ...     server = await app.get_server("rest")
    ... except BindingNotFoundError as e:
    ...     print(f"Missing: {e.key}")
"""

from __future__ import annotations

from typing import Any


class CaskError(Exception):
    """Base exception for all Cask-related errors."""

    pass


class ResolutionError(CaskError):
    """Raised when a binding cannot be resolved to a value."""

    def __init__(self, message: str, key: str | None = None, cause: Exception | None = None):
        super().__init__(message)
        self.key = key
        self.cause = cause


class BindingNotFoundError(ResolutionError):
    """Raised when no binding exists for the requested key."""

    def __init__(self, key: str, available: list[str] | None = None):
        self.available = available or []
        message = f"The key '{key}' is not bound to any value in context"
        if self.available:
            message += f"\nAvailable keys: {', '.join(self.available[:5])}"
            if len(self.available) > 5:
                message += f" (and {len(self.available) - 5} more)"
        super().__init__(message, key=key)


class CircularDependencyError(ResolutionError):
    """Raised when resolving a key requires resolving itself."""

    def __init__(self, chain: list[str]):
        self.chain = chain
        super().__init__(
            f"Circular dependency detected: {' → '.join(chain)}",
            key=chain[0] if chain else None,
        )


class AsyncResolutionError(ResolutionError):
    """Raised when ``get_sync`` meets a value that has to be awaited."""

    pass


class ConfigurationError(CaskError):
    """Raised when a binding or component artifact is malformed.

    This occurs when:
    - A provider class has no ``value()`` method
    - A binding has no value source
    - An unknown scope is requested

    Artifact problems surface when the binding is resolved, not when the
    component is mounted.
    """

    pass


class InjectionError(CaskError):
    """Raised when a constructor parameter cannot be injected."""

    def __init__(self, target: Any, parameter: str, reason: str):
        self.target = target
        self.parameter = parameter
        self.reason = reason
        target_name = getattr(target, "__name__", str(target))
        super().__init__(f"Failed to inject '{parameter}' into {target_name}: {reason}")


class LifecycleError(CaskError):
    """Raised when more than one server fails during a lifecycle phase.

    Attributes:
        errors: Every exception observed in the phase, in completion order
    """

    def __init__(self, message: str, errors: list[BaseException]):
        self.errors = errors
        details = "; ".join(f"{type(e).__name__}: {e}" for e in errors)
        super().__init__(f"{message} ({details})" if details else message)
