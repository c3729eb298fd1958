"""Application: the root context and server lifecycle controller.

The Application is a ``Context`` that adds role-aware registration
(controllers, components, servers, services) and drives start/stop of every
binding tagged ``server``.

Lifecycle:
    idle ──start()──▶ starting ──▶ started ──stop()──▶ stopping ──▶ stopped
      └───────────────────────stop()─────────────────────────────────┘

    ``start()`` subscribes one listener per configured shutdown signal
    (SIGTERM by default), then starts all servers concurrently. The listener
    schedules ``stop()`` on the event loop that ran ``start()``. ``stop()``
    removes the listener and stops all servers concurrently.

    The set of servers for a phase is taken from the registry when the phase
    begins; servers registered afterwards are not part of that phase.

Failure Handling:
    start: failures seen when the first server fails are raised at once,
           alone or as a ``LifecycleError``. Servers still starting keep
           running; their later failures are appended to ``start_errors``.
    stop:  every server is allowed to settle. A single failure is re-raised
           as-is; several are raised together as a ``LifecycleError``.

Example:
    >>> app = Application({"name": "shop"})
    >>> app.component(RestComponent)
    >>> app.server(GrpcServer, "grpc")
    >>>
    >>> async with app.lifespan():
    ...     rest = await app.get_server("rest")
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Iterable, Mapping
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator

from loguru import logger

from . import signals
from .binding import Binding
from .component import expand_component
from .config import ApplicationConfig
from .context import Context
from .errors import BindingNotFoundError, ConfigurationError, LifecycleError
from .identity import NameOrOptions, create_binding_for_class, resolve_identity
from .keys import DEFAULT_NAMESPACES, CoreBindings, CoreTags


class ApplicationState(str, Enum):
    """Lifecycle phases of an Application."""

    IDLE = "idle"
    STARTING = "starting"
    STARTED = "started"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Application(Context):
    """Root context with registration entry points and server lifecycle.

    Args:
        config: ``ApplicationConfig``, a mapping of config options, or a
            parent ``Context`` when no config is needed
        parent: Optional parent context

    Attributes:
        start_errors: Server start failures of the latest ``start()``,
            including those that arrive after it has raised

    Examples:
        >>> Application()
        >>> Application({"name": "my-app"})
        >>> Application(ApplicationConfig(name="my-app"), parent_ctx)
        >>> Application(parent_ctx)
    """

    def __init__(
        self,
        config: ApplicationConfig | Mapping[str, Any] | Context | None = None,
        parent: Context | None = None,
    ):
        if isinstance(config, Context) and parent is None:
            config, parent = None, config
        if config is None:
            config = ApplicationConfig()
        elif isinstance(config, Mapping):
            config = ApplicationConfig.from_mapping(config)
        elif not isinstance(config, ApplicationConfig):
            raise ConfigurationError(f"Invalid application config {config!r}")

        super().__init__(config.name, parent)
        self.config = config
        self.options = config.to_dict()
        self._state = ApplicationState.IDLE
        self._shutdown_listeners: list[signals.SignalListener] = []
        self._signal_stop: asyncio.Task | None = None
        self.start_errors: list[BaseException] = []

        self.bind(CoreBindings.APPLICATION_INSTANCE).to(self)
        self.bind(CoreBindings.APPLICATION_CONFIG).to(config)

    @property
    def state(self) -> ApplicationState:
        return self._state

    # Registration

    def _register(self, cls: type, role: str, options: NameOrOptions, **kwargs) -> Binding:
        binding = self.add(create_binding_for_class(cls, role, options, **kwargs))
        name = getattr(cls, "__name__", repr(cls))
        logger.debug(f"Bound {role} {name} to '{binding.key}' ({binding.scope.value})")
        return binding

    def controller(self, controller_class: type, name_or_options: NameOrOptions = None) -> Binding:
        """Register a controller class under ``controllers.<name>`` (transient by default)."""
        return self._register(controller_class, CoreTags.CONTROLLER, name_or_options, as_provider=False)

    def service(self, service_class: type, name_or_options: NameOrOptions = None) -> Binding:
        """Register a service class or service provider under ``services.<name>``.

        A ``{"interface": ...}`` option adds a ``service-interface`` tag
        carrying that value.
        """
        return self._register(service_class, CoreTags.SERVICE, name_or_options)

    def server(self, server_class: type, name_or_options: NameOrOptions = None) -> Binding:
        """Register a server class under ``servers.<name>`` (singleton by default)."""
        return self._register(server_class, CoreTags.SERVER, name_or_options, as_provider=False)

    def servers(self, server_classes: Iterable[type]) -> list[Binding]:
        """Register several servers in order.

        Registrations are independent: if one fails, the servers registered
        before it stay registered.
        """
        return [self.server(server_class) for server_class in server_classes]

    def component(self, component: Any, name_or_options: NameOrOptions = None) -> Binding:
        """Register a component class or instance and mount its artifacts."""
        return expand_component(self, component, name_or_options)

    async def get_server(self, target: type | str) -> Any:
        """Resolve a server by class or name.

        A class maps to its server key, a dotted string is used as a key, and
        any other string is taken as a name in the ``servers`` namespace.

        Raises:
            BindingNotFoundError: If no server binding exists for ``target``
        """
        if isinstance(target, type):
            key = resolve_identity(target, CoreTags.SERVER).key
        elif "." in target and self.is_bound(target):
            key = target
        else:
            key = f"{DEFAULT_NAMESPACES[CoreTags.SERVER]}.{target}"

        binding = self.get_binding(key, optional=True)
        if binding is None or CoreTags.SERVER not in binding.tag_map:
            servers = [b.key for b in self.find_by_tag(CoreTags.SERVER)]
            raise BindingNotFoundError(key, available=servers)
        return await self.get(key)

    # Lifecycle

    async def start(self) -> None:
        """Subscribe to shutdown signals and start every registered server."""
        if self._state is ApplicationState.STARTED:
            logger.debug(f"{self.name} is already started")
            return

        self._state = ApplicationState.STARTING
        self.start_errors = []
        logger.info(f"Starting {self.name}")
        self._listen_for_shutdown()

        bindings = self.find_by_tag(CoreTags.SERVER)
        await self._start_servers(bindings)

        self._state = ApplicationState.STARTED
        logger.info(f"{self.name} started with {len(bindings)} server(s)")

    async def stop(self) -> None:
        """Unsubscribe from shutdown signals and stop every registered server."""
        self._state = ApplicationState.STOPPING
        logger.info(f"Stopping {self.name}")
        self._remove_shutdown_listeners()

        bindings = self.find_by_tag(CoreTags.SERVER)
        results = await asyncio.gather(
            *(self._invoke(binding, "stop") for binding in bindings), return_exceptions=True
        )

        self._state = ApplicationState.STOPPED
        errors = [result for result in results if isinstance(result, BaseException)]
        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise LifecycleError(f"{len(errors)} servers failed to stop", errors) from errors[0]
        logger.info(f"{self.name} stopped")

    @asynccontextmanager
    async def lifespan(self) -> AsyncIterator[Application]:
        """Context manager that starts the application and always stops it."""
        await self.start()
        try:
            yield self
        finally:
            await self.stop()

    async def _start_servers(self, bindings: list[Binding]) -> None:
        if not bindings:
            return
        tasks = [asyncio.ensure_future(self._invoke(binding, "start")) for binding in bindings]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)

        errors = [
            task.exception() for task in tasks if task in done and task.exception() is not None
        ]
        if not errors:
            return
        for task in pending:
            task.add_done_callback(self._record_late_failure)
        self.start_errors.extend(errors)
        if len(errors) == 1:
            raise errors[0]
        raise LifecycleError(f"{len(errors)} servers failed to start", errors) from errors[0]

    async def _invoke(self, binding: Binding, operation: str) -> None:
        server = await self.get(binding.key)
        method = getattr(server, operation, None)
        if not callable(method):
            raise ConfigurationError(
                f"Server '{binding.key}' ({type(server).__name__}) has no {operation}() method"
            )
        result = method()
        if inspect.isawaitable(result):
            await result
        logger.debug(f"Server '{binding.key}' {operation} complete")

    def _record_late_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.start_errors.append(error)
            logger.error(f"Server failed after {self.name} start was aborted: {error!r}")

    # Shutdown signals

    def _listen_for_shutdown(self) -> None:
        if self._shutdown_listeners:
            return
        loop = asyncio.get_running_loop()

        def on_signal(signum: int) -> None:
            loop.call_soon_threadsafe(self._stop_from_signal)

        self._shutdown_listeners = [
            signals.add_listener(signum, on_signal) for signum in self.config.shutdown_signals
        ]

    def _stop_from_signal(self) -> None:
        self._signal_stop = asyncio.ensure_future(self.stop())
        self._signal_stop.add_done_callback(self._log_signal_stop)

    def _log_signal_stop(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"{self.name} failed to stop on signal: {task.exception()!r}")

    def _remove_shutdown_listeners(self) -> None:
        for listener in self._shutdown_listeners:
            listener.remove()
        self._shutdown_listeners = []
