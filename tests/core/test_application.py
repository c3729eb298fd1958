"""Tests for the Application registration facade and lifecycle."""

import asyncio
import os
import signal
import sys
from datetime import datetime
from typing import Annotated

import pytest

from cask import (
    Application,
    ApplicationConfig,
    ApplicationState,
    Binding,
    BindingNotFoundError,
    ConfigurationError,
    Context,
    CoreBindings,
    CoreTags,
    Inject,
    LifecycleError,
    Scope,
    bind,
)
from cask.core import signals

pytestmark = pytest.mark.unit


class FakeServer:
    def __init__(self):
        self.listening = False
        self.start_count = 0
        self.stop_count = 0

    async def start(self):
        self.listening = True
        self.start_count += 1

    async def stop(self):
        self.listening = False
        self.stop_count += 1


class AnotherServer(FakeServer):
    pass


class SyncServer:
    def __init__(self):
        self.listening = False

    def start(self):
        self.listening = True

    def stop(self):
        self.listening = False


def find_keys_by_tag(ctx, tag):
    return [binding.key for binding in ctx.find_by_tag(tag)]


def sigterm_listener_count():
    return len(signals.listeners(signal.SIGTERM))


async def wait_for(condition, timeout=1.0, interval=0.01):
    """Wait for a condition to become true."""
    start = asyncio.get_running_loop().time()
    while not condition():
        if asyncio.get_running_loop().time() - start > timeout:
            raise TimeoutError("Condition not met within timeout")
        await asyncio.sleep(interval)


class TestControllerBinding:
    class MyController:
        pass

    def test_binds_a_controller(self, app):
        binding = app.controller(self.MyController)
        assert CoreTags.CONTROLLER in binding.tag_names
        assert binding.key == "controllers.MyController"
        assert binding.scope is Scope.TRANSIENT
        assert binding.key in find_keys_by_tag(app, CoreTags.CONTROLLER)

    def test_custom_name(self, app):
        binding = app.controller(self.MyController, "my-controller")
        assert binding.key == "controllers.my-controller"
        assert binding.key in find_keys_by_tag(app, CoreTags.CONTROLLER)

    def test_custom_options(self, app):
        binding = app.controller(
            self.MyController, {"name": "my-controller", "namespace": "my-controllers"}
        )
        assert binding.key == "my-controllers.my-controller"

    def test_singleton_controller(self, app):
        @bind(scope=Scope.SINGLETON)
        class MySingletonController:
            pass

        binding = app.controller(MySingletonController)
        assert binding.scope is Scope.SINGLETON
        assert binding.key in find_keys_by_tag(app, "controller")

    def test_controller_instances_are_transient(self, app):
        app.controller(self.MyController)
        first = app.get_sync("controllers.MyController")
        assert isinstance(first, self.MyController)
        assert app.get_sync("controllers.MyController") is not first

    def test_rebinding_replaces_earlier_binding(self, app):
        first = app.controller(self.MyController)
        second = app.controller(self.MyController)
        assert first is not second
        assert app.get_binding("controllers.MyController") is second
        assert find_keys_by_tag(app, CoreTags.CONTROLLER) == ["controllers.MyController"]


class TestServiceBinding:
    class MyService:
        pass

    def test_binds_a_service(self, app):
        binding = app.service(self.MyService)
        assert CoreTags.SERVICE in binding.tag_names
        assert binding.key == "services.MyService"
        assert binding.scope is Scope.TRANSIENT
        assert binding.key in find_keys_by_tag(app, CoreTags.SERVICE)

    def test_custom_name(self, app):
        binding = app.service(self.MyService, "my-service")
        assert binding.key == "services.my-service"

    def test_custom_namespace(self, app):
        binding = app.service(self.MyService, {"namespace": "my-services", "name": "my-service"})
        assert binding.key == "my-services.my-service"
        assert binding.key in find_keys_by_tag(app, CoreTags.SERVICE)

    def test_interface_string(self, app):
        binding = app.service(self.MyService, {"interface": "MyService"})
        assert CoreTags.SERVICE in binding.tag_names
        assert binding.tag_map[CoreTags.SERVICE_INTERFACE] == "MyService"

    def test_interface_token(self, app):
        interface = object()
        binding = app.service(self.MyService, {"interface": interface})
        assert binding.tag_map[CoreTags.SERVICE_INTERFACE] is interface
        assert find_keys_by_tag(app, {CoreTags.SERVICE_INTERFACE: interface}) == [binding.key]

    def test_singleton_service(self, app):
        @bind(scope=Scope.SINGLETON)
        class MySingletonService:
            pass

        binding = app.service(MySingletonService)
        assert binding.scope is Scope.SINGLETON

    def test_service_provider(self, app):
        @bind(tags={"date": "now", "namespace": "localServices"})
        class MyServiceProvider:
            def value(self):
                return datetime.now()

        binding = app.service(MyServiceProvider)
        assert CoreTags.SERVICE in binding.tag_names
        assert binding.tag_map["date"] == "now"
        assert binding.key == "localServices.MyService"
        assert binding.scope is Scope.TRANSIENT
        assert isinstance(app.get_sync(binding.key), datetime)

    def test_service_provider_with_name_tag(self, app):
        @bind(tags={"date": "now", "name": "my-service"})
        class MyServiceProvider:
            def value(self):
                return datetime.now()

        binding = app.service(MyServiceProvider)
        assert binding.tag_map["date"] == "now"
        assert binding.key == "services.my-service"


class TestServerBinding:
    async def test_defaults_to_class_name(self, app):
        binding = app.server(FakeServer)
        assert binding.scope is Scope.SINGLETON
        assert CoreTags.SERVER in binding.tag_names
        server = await app.get_server("FakeServer")
        assert type(server) is FakeServer

    def test_transient_server(self, app):
        @bind(scope=Scope.TRANSIENT)
        class TransientServer(FakeServer):
            pass

        assert app.server(TransientServer).scope is Scope.TRANSIENT

    async def test_custom_name(self, app):
        app.server(FakeServer, "customName")
        server = await app.get_server("customName")
        assert type(server) is FakeServer

    def test_custom_namespace(self, app):
        binding = app.server(FakeServer, {"name": "customName", "namespace": "my-servers"})
        assert binding.key == "my-servers.customName"

    async def test_get_server_by_full_key(self, app):
        app.server(FakeServer, {"name": "customName", "namespace": "my-servers"})
        server = await app.get_server("my-servers.customName")
        assert type(server) is FakeServer

    async def test_multiple_servers(self, app):
        bindings = app.servers([FakeServer, AnotherServer])
        assert [b.key for b in bindings] == ["servers.FakeServer", "servers.AnotherServer"]
        assert all(CoreTags.SERVER in b.tag_names for b in bindings)
        assert type(await app.get_server(FakeServer)) is FakeServer
        assert type(await app.get_server(AnotherServer)) is AnotherServer

    def test_servers_is_not_transactional(self, app):
        with pytest.raises(AttributeError):
            app.servers([FakeServer, "not-a-class", AnotherServer])
        assert app.contains("servers.FakeServer")
        assert not app.contains("servers.AnotherServer")

    async def test_get_server_not_found(self, app):
        with pytest.raises(BindingNotFoundError):
            await app.get_server("missing")

    async def test_get_server_requires_server_tag(self, app):
        app.controller(FakeServer, {"namespace": "servers"})
        with pytest.raises(BindingNotFoundError):
            await app.get_server(FakeServer)


class TestComponentBinding:
    class MyComponent:
        pass

    def test_binds_a_component(self, app):
        binding = app.component(self.MyComponent)
        assert binding.scope is Scope.SINGLETON
        assert "components.MyComponent" in find_keys_by_tag(app, CoreTags.COMPONENT)

    def test_custom_name(self, app):
        app.component(self.MyComponent, "my-component")
        assert "components.my-component" in find_keys_by_tag(app, CoreTags.COMPONENT)

    def test_custom_namespace(self, app):
        binding = app.component(
            self.MyComponent, {"name": "my-component", "namespace": "my-components"}
        )
        assert binding.key == "my-components.my-component"

    def test_transient_component(self, app):
        @bind(scope=Scope.TRANSIENT)
        class MyTransientComponent:
            pass

        assert app.component(MyTransientComponent).scope is Scope.TRANSIENT

    def test_controllers_from_component(self, app):
        class MyController:
            pass

        class MyComponentWithControllers:
            controllers = [MyController]

        app.component(MyComponentWithControllers)
        assert app.get_binding("controllers.MyController").value_constructor is MyController

    def test_bindings_from_component(self, app):
        binding = Binding.bind("foo")

        class MyComponentWithBindings:
            bindings = [binding]

        app.component(MyComponentWithBindings)
        assert app.get_binding("foo") is binding

    def test_classes_from_component(self, app):
        class MyClass:
            pass

        class MyComponentWithClasses:
            classes = {"my-class": MyClass}

        app.component(MyComponentWithClasses)
        assert app.contains("my-class")
        assert app.get_binding("my-class").value_constructor is MyClass
        assert isinstance(app.get_sync("my-class"), MyClass)

    def test_providers_from_component(self, app):
        class MyProvider:
            def value(self):
                return "my-str"

        class MyComponentWithProviders:
            providers = {"my-provider": MyProvider}

        app.component(MyComponentWithProviders)
        assert app.contains("my-provider")
        assert app.get_sync("my-provider") == "my-str"

    def test_classes_honor_bind_metadata(self, app):
        @bind(scope=Scope.SINGLETON, tags=["foo"])
        class MyClass:
            pass

        class MyComponentWithClasses:
            classes = {"my-class": MyClass}

        app.component(MyComponentWithClasses)
        binding = app.get_binding("my-class")
        assert binding.scope is Scope.SINGLETON
        assert "foo" in binding.tag_names

    def test_providers_honor_bind_tags(self, app):
        @bind(tags=["foo"])
        class MyProvider:
            def value(self):
                return "my-str"

        class MyComponentWithProviders:
            providers = {"my-provider": MyProvider}

        app.component(MyComponentWithProviders)
        assert "foo" in app.get_binding("my-provider").tag_names

    def test_binds_from_component_constructor(self, app):
        class MyComponentWithDI:
            def __init__(self, ctx: Annotated[Context, Inject(CoreBindings.APPLICATION_INSTANCE)]):
                ctx.bind("foo").to("bar")

        app.component(MyComponentWithDI)
        assert app.contains("foo")
        assert app.get_sync("foo") == "bar"

    def test_component_instance(self, app):
        class MyController:
            pass

        class MyComponentWithControllers:
            controllers = [MyController]

        component = MyComponentWithControllers()
        binding = app.component(component, "instance")
        assert binding.key == "components.instance"
        assert app.get_sync("components.instance") is component
        assert app.contains("controllers.MyController")


class TestShutdownSignalListener:
    async def test_registers_listener_when_app_starts(self, app):
        count = sigterm_listener_count()
        await app.start()
        assert sigterm_listener_count() == count + 1

    async def test_stop_without_start_keeps_listeners(self, app):
        count = sigterm_listener_count()
        await app.stop()
        assert sigterm_listener_count() == count

    async def test_start_stop_cycles(self, app):
        await app.start()
        count = sigterm_listener_count()
        await app.stop()
        assert sigterm_listener_count() == count - 1
        await app.start()
        assert sigterm_listener_count() == count

    async def test_repeated_start_installs_one_listener(self, app):
        count = sigterm_listener_count()
        await app.start()
        await app.start()
        assert sigterm_listener_count() == count + 1

    def test_constructing_an_app_installs_nothing(self):
        count = sigterm_listener_count()
        Application()
        assert sigterm_listener_count() == count

    async def test_applications_are_independent(self, app):
        other = Application()
        count = sigterm_listener_count()
        await app.start()
        await other.start()
        assert sigterm_listener_count() == count + 2
        await other.stop()
        assert sigterm_listener_count() == count + 1

    async def test_configured_signals(self):
        app = Application(ApplicationConfig(shutdown_signals=(signal.SIGTERM, signal.SIGINT)))
        sigint_count = len(signals.listeners(signal.SIGINT))
        await app.start()
        assert len(signals.listeners(signal.SIGINT)) == sigint_count + 1
        await app.stop()
        assert len(signals.listeners(signal.SIGINT)) == sigint_count

    @pytest.mark.skipif(sys.platform == "win32", reason="requires POSIX signal delivery")
    async def test_sigterm_stops_the_application(self, app):
        app.server(FakeServer)
        await app.start()
        server = await app.get_server(FakeServer)
        assert server.listening

        os.kill(os.getpid(), signal.SIGTERM)
        await wait_for(lambda: app.state is ApplicationState.STOPPED)
        assert not server.listening


class TestLifecycle:
    async def test_initial_state(self, app):
        assert app.state is ApplicationState.IDLE

    async def test_start_and_stop_servers(self, app):
        app.servers([FakeServer, AnotherServer])
        await app.start()
        assert app.state is ApplicationState.STARTED
        fake = await app.get_server(FakeServer)
        another = await app.get_server(AnotherServer)
        assert fake.listening and another.listening

        await app.stop()
        assert app.state is ApplicationState.STOPPED
        assert not fake.listening and not another.listening

    async def test_sync_server_methods(self, app):
        app.server(SyncServer)
        await app.start()
        assert (await app.get_server(SyncServer)).listening

    async def test_start_when_started_is_a_no_op(self, app):
        app.server(FakeServer)
        await app.start()
        await app.start()
        assert (await app.get_server(FakeServer)).start_count == 1

    async def test_stop_without_start(self, app):
        await app.stop()
        assert app.state is ApplicationState.STOPPED

    async def test_restart(self, app):
        app.server(FakeServer)
        await app.start()
        await app.stop()
        await app.start()
        server = await app.get_server(FakeServer)
        assert server.listening
        assert server.start_count == 2

    async def test_lifespan(self, app):
        app.server(FakeServer)
        async with app.lifespan() as running:
            assert running is app
            assert app.state is ApplicationState.STARTED
        assert app.state is ApplicationState.STOPPED
        assert not (await app.get_server(FakeServer)).listening

    async def test_servers_start_concurrently(self, app):
        events = []

        class SlowServer:
            def __init__(self):
                self.name = type(self).__name__

            async def start(self):
                events.append(f"{self.name}:begin")
                await asyncio.sleep(0.01)
                events.append(f"{self.name}:end")

            async def stop(self):
                pass

        class OtherSlowServer(SlowServer):
            pass

        app.servers([SlowServer, OtherSlowServer])
        await app.start()
        assert events[:2] == ["SlowServer:begin", "OtherSlowServer:begin"]

    async def test_server_set_is_taken_when_phase_begins(self, app):
        class LateServer(FakeServer):
            pass

        class RegisteringServer(FakeServer):
            def __init__(self, app: Annotated[Application, Inject(CoreBindings.APPLICATION_INSTANCE)]):
                super().__init__()
                self.app = app

            async def start(self):
                await super().start()
                self.app.server(LateServer)

        app.server(RegisteringServer)
        await app.start()
        late = await app.get_server(LateServer)
        assert not late.listening

    async def test_start_fails_fast(self, app):
        release = asyncio.Event()

        class FailingServer(FakeServer):
            async def start(self):
                raise RuntimeError("boom")

        class SlowServer(FakeServer):
            async def start(self):
                await release.wait()
                await super().start()

        app.servers([FailingServer, SlowServer])
        with pytest.raises(RuntimeError, match="boom"):
            await app.start()

        slow = await app.get_server(SlowServer)
        assert not slow.listening
        release.set()
        await wait_for(lambda: slow.listening)
        assert [str(e) for e in app.start_errors] == ["boom"]

    async def test_start_failures_are_aggregated(self, app):
        class FailingServer(FakeServer):
            async def start(self):
                raise RuntimeError(type(self).__name__)

        class OtherFailingServer(FailingServer):
            pass

        app.servers([FailingServer, OtherFailingServer])
        with pytest.raises(LifecycleError) as exc_info:
            await app.start()
        assert sorted(str(e) for e in exc_info.value.errors) == [
            "FailingServer",
            "OtherFailingServer",
        ]
        assert app.start_errors == exc_info.value.errors

    async def test_late_start_failure_is_recorded(self, app):
        release = asyncio.Event()

        class FailingServer(FakeServer):
            async def start(self):
                raise RuntimeError("first")

        class LateFailingServer(FakeServer):
            async def start(self):
                await release.wait()
                raise RuntimeError("late")

        app.servers([FailingServer, LateFailingServer])
        with pytest.raises(RuntimeError, match="first"):
            await app.start()

        release.set()
        await wait_for(lambda: len(app.start_errors) == 2)
        assert [str(e) for e in app.start_errors] == ["first", "late"]

    async def test_start_errors_reset_on_start(self, app):
        class FailOnceServer(FakeServer):
            async def start(self):
                if self.start_count == 0:
                    self.start_count += 1
                    raise RuntimeError("once")
                await super().start()

        app.server(FailOnceServer)
        with pytest.raises(RuntimeError):
            await app.start()
        assert len(app.start_errors) == 1

        await app.start()
        assert app.start_errors == []
        assert app.state is ApplicationState.STARTED

    async def test_single_stop_failure_is_raised(self):
        app = Application()

        class FailingServer(FakeServer):
            async def stop(self):
                raise RuntimeError("stop failed")

        app.servers([FailingServer, FakeServer])
        with pytest.raises(RuntimeError, match="stop failed"):
            await app.stop()
        assert app.state is ApplicationState.STOPPED
        assert (await app.get_server(FakeServer)).stop_count == 1

    async def test_stop_failures_are_aggregated(self):
        app = Application()

        class FailingServer(FakeServer):
            async def stop(self):
                raise RuntimeError(type(self).__name__)

        class OtherFailingServer(FailingServer):
            pass

        app.servers([FailingServer, OtherFailingServer])
        with pytest.raises(LifecycleError) as exc_info:
            await app.stop()
        assert sorted(str(e) for e in exc_info.value.errors) == [
            "FailingServer",
            "OtherFailingServer",
        ]

    async def test_server_without_start_method(self):
        app = Application()

        class NotAServer:
            pass

        app.server(NotAServer)
        with pytest.raises(ConfigurationError, match=r"has no start\(\) method"):
            await app.start()
        app.unbind("servers.NotAServer")
        await app.stop()


class TestApplicationConstructor:
    def test_config_and_parent(self):
        ctx = Context()
        app = Application({"name": "my-app"}, ctx)
        assert app.parent is ctx
        assert app.options == {"name": "my-app"}

    def test_parent_without_config(self):
        ctx = Context()
        app = Application(ctx)
        assert app.parent is ctx
        assert app.options == {}

    def test_name_from_config(self):
        assert Application({"name": "my-app"}).name == "my-app"

    def test_generated_name(self):
        assert Application().name.startswith("Application-")

    def test_binds_itself_and_config(self):
        config = ApplicationConfig(name="my-app")
        app = Application(config)
        assert app.get_sync(CoreBindings.APPLICATION_INSTANCE) is app
        assert app.get_sync(CoreBindings.APPLICATION_CONFIG) is config

    def test_invalid_config(self):
        with pytest.raises(ConfigurationError, match="Invalid application config"):
            Application(42)
