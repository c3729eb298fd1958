"""Binding identity resolution for controllers, components, servers and services.

Given a class, the role it is registered under, and caller options, this
module computes the binding key, namespace, name, scope and tags. It is a pure
function of its inputs and of the class metadata recorded with ``@bind``.

Resolution Rules:
    Name:      metadata ``name`` tag > options name (or string shorthand) >
               class name (service providers drop a trailing ``Provider``)
    Namespace: metadata ``namespace`` tag > options namespace > role default
    Key:       options key > metadata ``key`` tag > ``<namespace>.<name>``
    Scope:     metadata scope > role default
    Tags:      metadata tags, the role tag, options tags, and for services
               a ``service-interface`` tag when an interface is given

Example:
    >>> resolve_identity(MyController, CoreTags.CONTROLLER).key
    'controllers.MyController'
    >>> resolve_identity(MyServer, CoreTags.SERVER, {"name": "rest", "namespace": "edge"}).key
    'edge.rest'
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any, Union

from typing_extensions import TypeAlias

from .binding import Binding, BindingTag, Scope, is_provider_class
from .errors import ConfigurationError
from .keys import DEFAULT_NAMESPACES, ContextTags, CoreTags
from .metadata import read_binding_metadata, tags_to_map

ROLE_DEFAULT_SCOPES: dict[str, Scope] = {
    CoreTags.CONTROLLER: Scope.TRANSIENT,
    CoreTags.SERVICE: Scope.TRANSIENT,
    CoreTags.COMPONENT: Scope.SINGLETON,
    CoreTags.SERVER: Scope.SINGLETON,
}


@dataclass
class BindingOptions:
    """Caller-supplied identity options.

    ``name``, ``namespace``, ``key`` and ``interface`` only shape identity;
    they appear in the tag map only when also listed in ``tags``.
    """

    name: str | None = None
    namespace: str | None = None
    key: str | None = None
    interface: Any = None
    tags: BindingTag | Iterable[BindingTag] | None = None


NameOrOptions: TypeAlias = Union[str, Mapping[str, Any], BindingOptions, None]

_OPTION_FIELDS = frozenset(f.name for f in fields(BindingOptions))


def normalize_options(name_or_options: NameOrOptions = None) -> BindingOptions:
    """Turn a name shorthand, a mapping, or None into ``BindingOptions``."""
    if name_or_options is None:
        return BindingOptions()
    if isinstance(name_or_options, BindingOptions):
        return name_or_options
    if isinstance(name_or_options, str):
        return BindingOptions(name=name_or_options)
    if isinstance(name_or_options, Mapping):
        unknown = set(name_or_options) - _OPTION_FIELDS
        if unknown:
            raise ConfigurationError(f"Unknown binding options: {', '.join(sorted(unknown))}")
        return BindingOptions(**name_or_options)
    raise ConfigurationError(f"Invalid binding options {name_or_options!r}")


@dataclass(frozen=True)
class BindingIdentity:
    """Key, scope and tags computed for a class.

    ``namespace`` is None when the key was given literally.
    """

    key: str
    namespace: str | None
    name: str
    scope: Scope
    tag_map: dict[str, Any] = field(default_factory=dict)


def default_name(cls: type, role: str | None = None) -> str:
    name = cls.__name__
    if role == CoreTags.SERVICE and is_provider_class(cls) and name.endswith("Provider"):
        return name[: -len("Provider")] or name
    return name


def resolve_identity(
    cls: type, role: str | None = None, options: NameOrOptions = None
) -> BindingIdentity:
    """Compute the binding identity of ``cls`` registered under ``role``.

    Args:
        cls: The class being registered
        role: One of the ``CoreTags`` roles, or None for a generic binding
        options: Name shorthand, mapping, or ``BindingOptions``

    Returns:
        The resolved ``BindingIdentity``
    """
    opts = normalize_options(options)
    metadata = read_binding_metadata(cls)
    meta_tags = dict(metadata.tags) if metadata else {}

    if opts.key:
        # Literal keys never read the class name
        key, namespace, name = opts.key, None, opts.key
    else:
        name = meta_tags.get(ContextTags.NAME) or opts.name or default_name(cls, role)
        namespace = (
            meta_tags.get(ContextTags.NAMESPACE) or opts.namespace or DEFAULT_NAMESPACES.get(role)
        )
        if meta_tags.get(ContextTags.KEY):
            key, namespace = meta_tags[ContextTags.KEY], None
        else:
            key = f"{namespace}.{name}" if namespace else name

    if metadata is not None and metadata.scope is not None:
        scope = metadata.scope
    else:
        scope = ROLE_DEFAULT_SCOPES.get(role, Scope.TRANSIENT)

    tag_map = meta_tags
    if role:
        tag_map[role] = role
    tag_map.update(tags_to_map(opts.tags))
    if role == CoreTags.SERVICE and opts.interface is not None:
        tag_map[CoreTags.SERVICE_INTERFACE] = opts.interface

    return BindingIdentity(key=key, namespace=namespace, name=name, scope=scope, tag_map=tag_map)


def create_binding_for_class(
    cls: type,
    role: str | None = None,
    options: NameOrOptions = None,
    *,
    as_provider: bool | None = None,
) -> Binding:
    """Build an unattached binding for ``cls`` from its resolved identity.

    Args:
        as_provider: Bind to the class's ``value()`` (True), construct the
            class directly (False), or decide by whether it defines ``value``
            (None)
    """
    identity = resolve_identity(cls, role, options)
    binding = Binding(identity.key).in_scope(identity.scope).tag(identity.tag_map)
    if as_provider is None:
        as_provider = is_provider_class(cls)
    return binding.to_provider(cls) if as_provider else binding.to_class(cls)
