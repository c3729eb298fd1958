"""Binding descriptors: the unit of registration in a context.

A binding associates a string key with a way to produce a value (a class to
construct, a provider class whose ``value()`` is called, a constant, or a
factory function), together with a scope and a tag map.

Classes:
    Scope: Lifetime of resolved values (transient, singleton, context)
    BindingType: Which value source a binding uses
    Binding: Key, scope, tags and value source for one registry entry
    Provider: Protocol for classes exposing a ``value()`` factory
    Inject: ``Annotated`` marker for key-based constructor injection

Example:
    >>> binding = Binding("services.mailer").to_class(Mailer).in_scope(Scope.SINGLETON)
    >>> binding.tag("service", {"transport": "smtp"})
    >>> binding.tag_map
    {'service': 'service', 'transport': 'smtp'}

Tags:
    A plain name tag stores itself as its value (``tag("server")`` gives
    ``tag_map["server"] == "server"``); mapping tags store arbitrary values,
    including symbolic tokens which are kept as-is and compared by identity.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Union

from typing_extensions import TypeAlias, runtime_checkable

BindingTag: TypeAlias = Union[str, Mapping[str, Any]]
BindingTemplate: TypeAlias = Callable[["Binding"], Any]

_MISSING = object()


class Scope(Enum):
    """Binding value lifetimes."""

    TRANSIENT = "transient"  # New value for each resolution
    SINGLETON = "singleton"  # One value shared by every context
    CONTEXT = "context"  # One value per resolving context


class BindingType(Enum):
    """Value sources a binding can be bound to."""

    CLASS = "class"
    PROVIDER = "provider"
    CONSTANT = "constant"
    DYNAMIC_VALUE = "dynamic_value"


@runtime_checkable
class Provider(Protocol):
    """Protocol for provider classes.

    A provider is constructed through the context like any class, then its
    ``value()`` is called to produce the bound value. ``value()`` may return
    an awaitable, in which case only async resolution can consume it.
    """

    def value(self) -> Any:
        """Produce the bound value."""
        ...


@dataclass(frozen=True)
class Inject:
    """Marks a constructor parameter for injection by binding key.

    Examples:
        >>> class Greeter:
        ...     def __init__(self, app: Annotated[Context, Inject("application.instance")]):
        ...         self.app = app

    Attributes:
        key: Binding key resolved from the constructing context
        optional: Inject None instead of failing when the key is unbound
    """

    key: str
    optional: bool = False


def is_provider_class(cls: Any) -> bool:
    """Check whether a class exposes a callable ``value`` attribute."""
    return isinstance(cls, type) and callable(getattr(cls, "value", None))


class Binding:
    """A key together with its scope, tags and value source.

    Attributes:
        key: Unique key within the owning context
        scope: Lifetime of values produced by this binding
        tag_map: Ordered mapping of tag name to tag value
        type: The kind of value source, None while unbound
        value_constructor: Class constructed for CLASS bindings
        provider_constructor: Provider class for PROVIDER bindings
    """

    def __init__(self, key: str):
        if not isinstance(key, str) or not key:
            raise ValueError(f"Binding key must be a non-empty string, got {key!r}")
        self.key = key
        self.scope = Scope.TRANSIENT
        self.tag_map: dict[str, Any] = {}
        self.type: BindingType | None = None
        self.value_constructor: type | None = None
        self.provider_constructor: type | None = None
        self._source: Any = None
        self._singleton_value: Any = _MISSING

    @classmethod
    def bind(cls, key: str) -> Binding:
        """Create an unattached binding for ``key``."""
        return cls(key)

    @property
    def tag_names(self) -> list[str]:
        return list(self.tag_map)

    @property
    def source(self) -> Any:
        """The constant or factory function for CONSTANT/DYNAMIC_VALUE bindings."""
        return self._source

    def tag(self, *tags: BindingTag | Iterable[BindingTag]) -> Binding:
        """Add name tags or mapping tags.

        Examples:
            >>> binding.tag("controller")
            >>> binding.tag({"date": "now"}, "cached")
            >>> binding.tag(["a", "b"])
        """
        for tag in tags:
            if isinstance(tag, str):
                self.tag_map[tag] = tag
            elif isinstance(tag, Mapping):
                self.tag_map.update(tag)
            elif isinstance(tag, Iterable):
                self.tag(*tag)
            else:
                raise TypeError(f"Invalid binding tag {tag!r}")
        return self

    def in_scope(self, scope: Scope) -> Binding:
        if not isinstance(scope, Scope):
            scope = Scope(scope)
        self.scope = scope
        self._reset()
        return self

    def apply(self, *templates: BindingTemplate) -> Binding:
        """Run template functions that configure this binding in place."""
        for template in templates:
            template(self)
        return self

    def to(self, value: Any) -> Binding:
        """Bind to a constant value."""
        return self._set_source(BindingType.CONSTANT, source=value)

    def to_class(self, cls: type) -> Binding:
        """Bind to a class constructed through the resolving context."""
        return self._set_source(BindingType.CLASS, constructor=cls)

    def to_provider(self, provider_class: type) -> Binding:
        """Bind to the ``value()`` of a provider class instance."""
        return self._set_source(BindingType.PROVIDER, provider=provider_class)

    def to_dynamic_value(self, factory: Callable[[], Any]) -> Binding:
        """Bind to a zero-argument factory called on each resolution."""
        return self._set_source(BindingType.DYNAMIC_VALUE, source=factory)

    def _set_source(
        self,
        binding_type: BindingType,
        *,
        constructor: type | None = None,
        provider: type | None = None,
        source: Any = None,
    ) -> Binding:
        self.type = binding_type
        self.value_constructor = constructor
        self.provider_constructor = provider
        self._source = source
        self._reset()
        return self

    # Singleton caching

    def get_cached(self) -> Any:
        return self._singleton_value

    def set_cached(self, value: Any) -> None:
        self._singleton_value = value

    def has_cached(self) -> bool:
        return self._singleton_value is not _MISSING

    def _reset(self) -> None:
        self._singleton_value = _MISSING

    def __repr__(self) -> str:
        return (
            f"Binding(key={self.key!r}, scope={self.scope.value}, "
            f"type={self.type.value if self.type else None}, tags={self.tag_names})"
        )
