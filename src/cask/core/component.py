"""Components: declarative bundles of bindings mounted as a unit.

A component is any object exposing some of the artifact groups below. Each
group is optional; a component may also register bindings imperatively from
its constructor by injecting the application.

Artifact Groups (processed in this order):
    controllers: Sequence of controller classes
    bindings:    Sequence of ready-made ``Binding`` objects, added verbatim
    classes:     Mapping of binding key to class, constructed on resolution
    providers:   Mapping of binding key to provider class, resolved via ``value()``
    servers:     Mapping of server name to server class
    services:    Sequence of service classes

Example:
    >>> class RestComponent(Component):
    ...     controllers = [PingController]
    ...     providers = {"rest.config": RestConfigProvider}
    ...     servers = {"rest": RestServer}
    ...
    ...     def __init__(self, app: Annotated[Application, Inject(CoreBindings.APPLICATION_INSTANCE)]):
    ...         app.bind("rest.port").to(8080)
    >>>
    >>> app.component(RestComponent)

Malformed artifacts (for instance a provider without ``value()``) are not
checked here; they fail when the binding is resolved.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from loguru import logger

from .binding import Binding
from .identity import BindingOptions, NameOrOptions, create_binding_for_class, resolve_identity
from .keys import CoreTags

if TYPE_CHECKING:
    from .application import Application


class Component:
    """Optional base class documenting the artifact groups a component may declare."""

    controllers: Sequence[type] | None = None
    bindings: Sequence[Binding] | None = None
    classes: Mapping[str, type] | None = None
    providers: Mapping[str, type] | None = None
    servers: Mapping[str, type] | None = None
    services: Sequence[type] | None = None


def create_component_binding(component: Any, options: NameOrOptions = None) -> Binding:
    """Binding for a component class, or a constant binding for an instance."""
    if isinstance(component, type):
        return create_binding_for_class(component, CoreTags.COMPONENT, options, as_provider=False)
    identity = resolve_identity(type(component), CoreTags.COMPONENT, options)
    return Binding(identity.key).in_scope(identity.scope).tag(identity.tag_map).to(component)


def expand_component(app: Application, component: Any, options: NameOrOptions = None) -> Binding:
    """Register a component and mount its artifacts into ``app``.

    Component classes are bound and then resolved synchronously from ``app``,
    so their constructors can receive the application and register bindings
    before the declared artifacts are processed.

    Returns:
        The component binding
    """
    binding = app.add(create_component_binding(component, options))
    instance = app.get_sync(binding.key)
    mount_component(app, instance)
    return binding


def mount_component(app: Application, component: Any) -> None:
    """Register every artifact group declared by a component instance."""
    name = type(component).__name__

    for controller in getattr(component, "controllers", None) or ():
        app.controller(controller)

    for binding in getattr(component, "bindings", None) or ():
        app.add(binding)

    for key, cls in (getattr(component, "classes", None) or {}).items():
        app.add(create_binding_for_class(cls, options=BindingOptions(key=key), as_provider=False))

    for key, provider in (getattr(component, "providers", None) or {}).items():
        app.add(
            create_binding_for_class(provider, options=BindingOptions(key=key), as_provider=True)
        )

    for server_name, server in (getattr(component, "servers", None) or {}).items():
        app.server(server, server_name)

    for service in getattr(component, "services", None) or ():
        app.service(service)

    logger.debug(f"Mounted component {name} into {app.name}")
