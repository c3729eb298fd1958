"""Cask - component composition and lifecycle for Python IoC applications.

Cask turns declarative components into bindings of a dependency-injection
context and starts and stops the servers they contribute.

Quick Start:
    >>> from cask import Application, Component, bind, Scope
    >>>
    >>> class RestServer:
    ...     async def start(self): ...
    ...     async def stop(self): ...
    >>>
    >>> class PingController:
    ...     pass
    >>>
    >>> class RestComponent(Component):
    ...     controllers = [PingController]
    ...     servers = {"rest": RestServer}
    >>>
    >>> app = Application()
    >>> app.component(RestComponent)
    >>> async with app.lifespan():
    ...     server = await app.get_server("rest")

Logging goes through loguru and is disabled by default; enable it with
``logger.enable("cask")``.
"""

from loguru import logger

__version__ = "0.1.0"

from cask.core import (
    Application,
    ApplicationConfig,
    ApplicationState,
    AsyncResolutionError,
    Binding,
    BindingNotFoundError,
    BindingOptions,
    CaskError,
    CircularDependencyError,
    Component,
    ConfigurationError,
    Context,
    CoreBindings,
    CoreTags,
    Inject,
    InjectionError,
    LifecycleError,
    Provider,
    ResolutionError,
    Scope,
    bind,
    resolve_identity,
)

__all__ = [
    # Application
    "Application",
    "ApplicationConfig",
    "ApplicationState",
    "Component",
    # Context and bindings
    "Context",
    "Binding",
    "BindingOptions",
    "Scope",
    "Provider",
    "Inject",
    "bind",
    "resolve_identity",
    "CoreBindings",
    "CoreTags",
    # Errors
    "CaskError",
    "ResolutionError",
    "BindingNotFoundError",
    "CircularDependencyError",
    "AsyncResolutionError",
    "ConfigurationError",
    "InjectionError",
    "LifecycleError",
]

logger.disable("cask")  # Disabled by default, users can enable with logger.enable("cask")
