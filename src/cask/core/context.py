"""Key-indexed binding registry with hierarchical resolution.

A ``Context`` stores bindings by key, answers tag and key-pattern queries, and
turns bindings into values. Contexts chain to an optional parent: lookups that
miss locally continue in the parent, and query results merge the whole chain
with child bindings shadowing parent bindings of the same key.

Resolution:
    - CONSTANT bindings return their value as-is
    - DYNAMIC_VALUE bindings call their factory on each resolution
    - CLASS bindings construct ``value_constructor`` with constructor injection
    - PROVIDER bindings construct the provider, then call its ``value()``

    Constructor parameters annotated ``Annotated[T, Inject("key")]`` are
    resolved from the context performing the resolution. SINGLETON values are
    cached on the binding, CONTEXT values in the resolving context.

Example:
    >>> ctx = Context("request")
    >>> ctx.bind("greeting").to("hello")
    >>> ctx.bind("services.greeter").to_class(Greeter).tag("service")
    >>> ctx.get_sync("greeting")
    'hello'
    >>> [b.key for b in ctx.find_by_tag("service")]
    ['services.greeter']
"""

from __future__ import annotations

import fnmatch
import inspect
import re
from collections.abc import Callable, Iterator, Mapping
from contextvars import ContextVar
from typing import Annotated, Any, get_args, get_origin, get_type_hints
from uuid import uuid4
from weakref import WeakKeyDictionary

from loguru import logger

from .binding import Binding, BindingType, Inject, Scope
from .errors import (
    AsyncResolutionError,
    BindingNotFoundError,
    CircularDependencyError,
    ConfigurationError,
    InjectionError,
)

BindingFilter = Callable[[Binding], bool]

# Keys currently being resolved by this task/thread, outermost first
_resolution_chain: ContextVar[tuple[str, ...]] = ContextVar("cask_resolution_chain", default=())

_injection_cache: WeakKeyDictionary[type, list[tuple[str, Inject, bool]]] = WeakKeyDictionary()


def _parameter_hints(init: Callable) -> dict[str, Any]:
    """Type hints of ``init``, keeping every parameter whose annotation resolves."""
    try:
        return get_type_hints(init, include_extras=True)
    except Exception:
        pass

    # One annotation failed (a function-local class, say), resolve the rest one by one
    namespace = getattr(init, "__globals__", {})
    hints: dict[str, Any] = {}
    for name, annotation in getattr(init, "__annotations__", {}).items():
        if isinstance(annotation, str):
            try:
                annotation = eval(annotation, namespace)
            except Exception:
                continue
        hints[name] = annotation
    return hints


def _injection_points(cls: type) -> list[tuple[str, Inject, bool]]:
    """Find ``(parameter, marker, has_default)`` for every injected parameter.

    Raises:
        InjectionError: If an ``Inject`` annotation cannot be resolved
    """
    if cls in _injection_cache:
        return _injection_cache[cls]

    init = cls.__init__
    if init is object.__init__:
        points: list[tuple[str, Inject, bool]] = []
    else:
        hints = _parameter_hints(init)
        points = []
        for name, param in inspect.signature(init).parameters.items():
            if name == "self" or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
                continue
            if name not in hints:
                if isinstance(param.annotation, str) and "Inject(" in param.annotation:
                    raise InjectionError(
                        cls, name, f"annotation {param.annotation!r} could not be resolved"
                    )
                continue
            hint = hints[name]
            if get_origin(hint) is not Annotated:
                continue
            marker = next((m for m in get_args(hint)[1:] if isinstance(m, Inject)), None)
            if marker is not None:
                points.append((name, marker, param.default is not param.empty))

    _injection_cache[cls] = points
    return points


def _constructor(binding: Binding) -> type:
    """The class a CLASS or PROVIDER binding constructs.

    Raises:
        ConfigurationError: If the binding holds something other than a class
    """
    if binding.type is BindingType.CLASS:
        cls = binding.value_constructor
    else:
        cls = binding.provider_constructor
    if not isinstance(cls, type):
        raise ConfigurationError(
            f"Binding '{binding.key}' must be bound to a class, got {type(cls).__name__} {cls!r}"
        )
    return cls


def _tag_matcher(tag: str | re.Pattern | Mapping[str, Any]) -> BindingFilter:
    if isinstance(tag, re.Pattern):
        return lambda b: any(tag.search(name) for name in b.tag_names)
    if isinstance(tag, Mapping):

        def matches(b: Binding) -> bool:
            for name, value in tag.items():
                if name not in b.tag_map:
                    return False
                actual = b.tag_map[name]
                if actual is not value and actual != value:
                    return False
            return True

        return matches
    if any(ch in tag for ch in "*?["):
        return lambda b: any(fnmatch.fnmatchcase(name, tag) for name in b.tag_names)
    return lambda b: tag in b.tag_map


def _key_matcher(pattern: str | re.Pattern | BindingFilter | None) -> BindingFilter:
    if pattern is None:
        return lambda b: True
    if isinstance(pattern, re.Pattern):
        return lambda b: pattern.search(b.key) is not None
    if isinstance(pattern, str):
        return lambda b: fnmatch.fnmatchcase(b.key, pattern)
    return pattern


class Context:
    """Binding registry with parent chaining and value resolution.

    Args:
        name: Context name, defaults to ``Context-<uuid>``
        parent: Optional parent context for hierarchical lookup
    """

    def __init__(self, name: str | None = None, parent: Context | None = None):
        self.name = name or f"{type(self).__name__}-{uuid4().hex}"
        self.parent = parent
        self.registry: dict[str, Binding] = {}
        self._context_cache: dict[str, tuple[Binding, Any]] = {}

    # Registration

    def bind(self, key: str) -> Binding:
        """Create a binding for ``key`` and add it to this context."""
        return self.add(Binding(key))

    def add(self, binding: Binding) -> Binding:
        """Add a binding, replacing any earlier binding with the same key."""
        key = binding.key
        if key in self.registry:
            logger.debug(f"Replacing binding '{key}' in {self.name}")
        self.registry.pop(key, None)
        self._context_cache.pop(key, None)
        self.registry[key] = binding
        return binding

    def unbind(self, key: str) -> bool:
        """Remove a local binding. Returns False if the key was not bound here."""
        self._context_cache.pop(key, None)
        return self.registry.pop(key, None) is not None

    # Lookup

    def contains(self, key: str) -> bool:
        """Check whether ``key`` is bound in this context (parents excluded)."""
        return key in self.registry

    def is_bound(self, key: str) -> bool:
        """Check whether ``key`` is bound in this context or any ancestor."""
        return self.get_owner_context(key) is not None

    def get_owner_context(self, key: str) -> Context | None:
        ctx: Context | None = self
        while ctx is not None:
            if key in ctx.registry:
                return ctx
            ctx = ctx.parent
        return None

    def get_binding(self, key: str, *, optional: bool = False) -> Binding | None:
        """Find the binding for ``key`` in this context chain.

        Raises:
            BindingNotFoundError: If unbound and ``optional`` is False
        """
        owner = self.get_owner_context(key)
        if owner is not None:
            return owner.registry[key]
        if optional:
            return None
        raise BindingNotFoundError(key, available=list(self.keys()))

    def find(self, pattern: str | re.Pattern | BindingFilter | None = None) -> list[Binding]:
        """Find bindings in the chain by key glob, key regex or filter function."""
        matcher = _key_matcher(pattern)
        return [b for b in self._merged_bindings().values() if matcher(b)]

    def find_by_tag(self, tag: str | re.Pattern | Mapping[str, Any]) -> list[Binding]:
        """Find bindings by tag name, tag-name pattern, or tag name/value mapping."""
        return self.find(_tag_matcher(tag))

    def keys(self) -> list[str]:
        return list(self._merged_bindings())

    def _merged_bindings(self) -> dict[str, Binding]:
        chain: list[Context] = []
        ctx: Context | None = self
        while ctx is not None:
            chain.append(ctx)
            ctx = ctx.parent
        merged: dict[str, Binding] = {}
        for ctx in reversed(chain):
            merged.update(ctx.registry)
        return merged

    # Resolution

    def get_sync(self, key: str, *, optional: bool = False) -> Any:
        """Resolve ``key`` synchronously.

        Raises:
            BindingNotFoundError: If unbound and ``optional`` is False
            AsyncResolutionError: If producing the value requires awaiting
        """
        binding = self.get_binding(key, optional=optional)
        if binding is None:
            return None
        token = self._enter(key)
        try:
            return self._value_sync(binding)
        finally:
            _resolution_chain.reset(token)

    async def get(self, key: str, *, optional: bool = False) -> Any:
        """Resolve ``key``, awaiting provider values and factories as needed."""
        binding = self.get_binding(key, optional=optional)
        if binding is None:
            return None
        token = self._enter(key)
        try:
            return await self._value_async(binding)
        finally:
            _resolution_chain.reset(token)

    def _enter(self, key: str):
        chain = _resolution_chain.get()
        if key in chain:
            raise CircularDependencyError([*chain, key])
        return _resolution_chain.set((*chain, key))

    def _cached(self, binding: Binding) -> tuple[bool, Any]:
        if binding.scope is Scope.SINGLETON and binding.has_cached():
            return True, binding.get_cached()
        if binding.scope is Scope.CONTEXT:
            entry = self._context_cache.get(binding.key)
            if entry is not None and entry[0] is binding:
                return True, entry[1]
        return False, None

    def _store(self, binding: Binding, value: Any) -> None:
        if binding.scope is Scope.SINGLETON:
            binding.set_cached(value)
        elif binding.scope is Scope.CONTEXT:
            self._context_cache[binding.key] = (binding, value)

    def _value_sync(self, binding: Binding) -> Any:
        if binding.type is BindingType.CONSTANT:
            return binding.source
        hit, value = self._cached(binding)
        if hit:
            return value

        if binding.type is BindingType.DYNAMIC_VALUE:
            value = binding.source()
        elif binding.type is BindingType.CLASS:
            value = self._instantiate_sync(_constructor(binding))
        elif binding.type is BindingType.PROVIDER:
            provider = self._instantiate_sync(_constructor(binding))
            value = self._provider_value(binding, provider)
        else:
            raise ConfigurationError(f"Binding '{binding.key}' is not bound to a value")

        if inspect.isawaitable(value):
            if inspect.iscoroutine(value):
                value.close()
            raise AsyncResolutionError(
                f"Binding '{binding.key}' produces an awaitable value. "
                f"Use 'await context.get({binding.key!r})' instead.",
                key=binding.key,
            )
        self._store(binding, value)
        return value

    async def _value_async(self, binding: Binding) -> Any:
        if binding.type is BindingType.CONSTANT:
            return binding.source
        hit, value = self._cached(binding)
        if hit:
            return value

        if binding.type is BindingType.DYNAMIC_VALUE:
            value = binding.source()
        elif binding.type is BindingType.CLASS:
            value = await self._instantiate_async(_constructor(binding))
        elif binding.type is BindingType.PROVIDER:
            provider = await self._instantiate_async(_constructor(binding))
            value = self._provider_value(binding, provider)
        else:
            raise ConfigurationError(f"Binding '{binding.key}' is not bound to a value")

        if inspect.isawaitable(value):
            value = await value
        self._store(binding, value)
        return value

    def _provider_value(self, binding: Binding, provider: Any) -> Any:
        value_fn = getattr(provider, "value", None)
        if not callable(value_fn):
            raise ConfigurationError(
                f"Provider {type(provider).__name__} bound to '{binding.key}' "
                f"does not implement value()"
            )
        return value_fn()

    def _instantiate_sync(self, cls: type) -> Any:
        kwargs = {}
        for name, marker, has_default in _injection_points(cls):
            try:
                value = self.get_sync(marker.key, optional=marker.optional or has_default)
            except BindingNotFoundError as e:
                raise InjectionError(cls, name, str(e)) from e
            if value is None and has_default and not self.is_bound(marker.key):
                continue
            kwargs[name] = value
        return cls(**kwargs)

    async def _instantiate_async(self, cls: type) -> Any:
        kwargs = {}
        for name, marker, has_default in _injection_points(cls):
            try:
                value = await self.get(marker.key, optional=marker.optional or has_default)
            except BindingNotFoundError as e:
                raise InjectionError(cls, name, str(e)) from e
            if value is None and has_default and not self.is_bound(marker.key):
                continue
            kwargs[name] = value
        return cls(**kwargs)

    # Dict-like conveniences

    def __contains__(self, key: str) -> bool:
        return self.contains(key)

    def __len__(self) -> int:
        return len(self.registry)

    def __iter__(self) -> Iterator[str]:
        return iter(self.registry)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, bindings={len(self.registry)})"
