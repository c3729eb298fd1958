"""Class-level binding metadata kept in a side table.

``@bind`` records scope and tag declarations for a class without touching the
class itself. The identity resolver reads them back with
``read_binding_metadata`` when the class is registered.

Example:
    >>> @bind(scope=Scope.SINGLETON, tags={"name": "mailer", "transport": "smtp"})
    ... class Mailer:
    ...     pass
    >>>
    >>> read_binding_metadata(Mailer).scope
    <Scope.SINGLETON: 'singleton'>

Metadata is looked up by class identity, so a subclass of a decorated class
has no metadata of its own until it is decorated too.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, TypeVar
from weakref import WeakKeyDictionary

from loguru import logger

from .binding import BindingTag, Scope

T = TypeVar("T", bound=type)

_metadata: WeakKeyDictionary[type, BindingMetadata] = WeakKeyDictionary()


@dataclass
class BindingMetadata:
    """Scope and tags declared on a class."""

    scope: Scope | None = None
    tags: dict[str, Any] = field(default_factory=dict)


def tags_to_map(tags: BindingTag | Iterable[BindingTag] | None) -> dict[str, Any]:
    if tags is None:
        return {}
    if isinstance(tags, str):
        return {tags: tags}
    if isinstance(tags, Mapping):
        return dict(tags)
    tag_map: dict[str, Any] = {}
    for tag in tags:
        tag_map.update(tags_to_map(tag))
    return tag_map


def bind(
    *,
    scope: Scope | str | None = None,
    tags: BindingTag | Iterable[BindingTag] | None = None,
) -> Callable[[T], T]:
    """Decorator declaring the binding scope and tags of a class.

    Args:
        scope: Scope overriding the role default at registration time
        tags: A tag name, a list of names, or a mapping of tag names to values.
            The ``name``, ``namespace`` and ``key`` tags also shape the key.

    Returns:
        A class decorator returning the class unchanged
    """
    resolved_scope = Scope(scope) if isinstance(scope, str) else scope

    def decorator(cls: T) -> T:
        metadata = BindingMetadata(scope=resolved_scope, tags=tags_to_map(tags))
        _metadata[cls] = metadata
        logger.debug(f"Recorded binding metadata for {cls.__name__}: {metadata}")
        return cls

    return decorator


def read_binding_metadata(cls: type) -> BindingMetadata | None:
    """Return the metadata declared on ``cls`` itself, if any."""
    try:
        return _metadata.get(cls)
    except TypeError:
        # Not weak-referenceable, so it cannot carry metadata
        return None
