"""Core building blocks of Cask.

Key Components:
    Context: Key-indexed binding registry with hierarchical resolution
    Binding: Key, scope, tags and value source of one registry entry
    bind: Decorator declaring a class's binding scope and tags
    resolve_identity: Computes binding key, scope and tags for a class
    Component: Declarative bundle of controllers, classes, providers, bindings
    Application: Root context driving server start/stop
"""

from cask.core.application import Application, ApplicationState
from cask.core.binding import Binding, BindingType, Inject, Provider, Scope, is_provider_class
from cask.core.component import Component, expand_component, mount_component
from cask.core.config import ApplicationConfig
from cask.core.context import Context
from cask.core.errors import (
    AsyncResolutionError,
    BindingNotFoundError,
    CaskError,
    CircularDependencyError,
    ConfigurationError,
    InjectionError,
    LifecycleError,
    ResolutionError,
)
from cask.core.identity import (
    BindingIdentity,
    BindingOptions,
    create_binding_for_class,
    normalize_options,
    resolve_identity,
)
from cask.core.keys import ContextTags, CoreBindings, CoreTags
from cask.core.metadata import BindingMetadata, bind, read_binding_metadata

__all__ = [
    # Application
    "Application",
    "ApplicationConfig",
    "ApplicationState",
    # Bindings
    "Binding",
    "BindingIdentity",
    "BindingMetadata",
    "BindingOptions",
    "BindingType",
    "Inject",
    "Provider",
    "Scope",
    # Components
    "Component",
    "Context",
    "ContextTags",
    "CoreBindings",
    "CoreTags",
    # Errors
    "AsyncResolutionError",
    "BindingNotFoundError",
    "CaskError",
    "CircularDependencyError",
    "ConfigurationError",
    "InjectionError",
    "LifecycleError",
    "ResolutionError",
    # Functions
    "bind",
    "create_binding_for_class",
    "expand_component",
    "is_provider_class",
    "mount_component",
    "normalize_options",
    "read_binding_metadata",
    "resolve_identity",
]
