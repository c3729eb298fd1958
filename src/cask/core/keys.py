"""Well-known binding keys, tag names and namespaces."""

from __future__ import annotations


class CoreBindings:
    """Keys bound by every Application."""

    APPLICATION_INSTANCE = "application.instance"
    APPLICATION_CONFIG = "application.config"


class CoreTags:
    """Tag names identifying the role of a binding."""

    CONTROLLER = "controller"
    COMPONENT = "component"
    SERVER = "server"
    SERVICE = "service"
    SERVICE_INTERFACE = "service-interface"


class ContextTags:
    """Tag names read from class metadata to shape binding identity."""

    NAME = "name"
    NAMESPACE = "namespace"
    KEY = "key"


DEFAULT_NAMESPACES: dict[str, str] = {
    CoreTags.CONTROLLER: "controllers",
    CoreTags.COMPONENT: "components",
    CoreTags.SERVER: "servers",
    CoreTags.SERVICE: "services",
}
