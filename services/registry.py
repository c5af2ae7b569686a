"""
Service Registry
Lazy, dependency-aware construction of clients, repositories and services
"""
from typing import Dict, Any, Callable, Optional, List, Set
from enum import Enum
import threading
import logging

logger = logging.getLogger(__name__)


class ServiceLifecycle(Enum):
    """Service lifecycle management options"""
    SINGLETON = "singleton"  # One instance per application
    TRANSIENT = "transient"  # New instance on every lookup


class ServiceDescriptor:
    """Describes a service registration"""

    def __init__(self, name: str, factory: Optional[Callable] = None, instance: Any = None,
                 lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                 dependencies: Optional[List[str]] = None):
        self.name = name
        self.factory = factory
        self.instance = instance
        self.lifecycle = lifecycle
        self.dependencies = dependencies or []
        self.lock = threading.Lock()


class ServiceRegistry:
    """
    Registry of named factories.

    Factories receive their declared dependencies as keyword arguments named
    after the dependency. Singletons are built once under a per-service lock;
    transients are rebuilt on every get() so they bind to the current
    db.session. Circular dependencies are detected per thread.
    """

    def __init__(self):
        self._descriptors: Dict[str, ServiceDescriptor] = {}
        self._overrides: Dict[str, Any] = {}
        self._thread_local = threading.local()
        self._lock = threading.Lock()

    def register_factory(self, name: str, factory: Callable,
                         lifecycle: ServiceLifecycle = ServiceLifecycle.SINGLETON,
                         dependencies: Optional[List[str]] = None) -> None:
        descriptor = ServiceDescriptor(name, factory=factory, lifecycle=lifecycle,
                                       dependencies=dependencies)
        with self._lock:
            self._descriptors[name] = descriptor

    def register_singleton(self, name: str, factory: Callable, **kwargs) -> None:
        self.register_factory(name, factory, ServiceLifecycle.SINGLETON, **kwargs)

    def register_transient(self, name: str, factory: Callable, **kwargs) -> None:
        self.register_factory(name, factory, ServiceLifecycle.TRANSIENT, **kwargs)

    def override(self, name: str, instance: Any) -> None:
        """Replace a service with a fixed instance (used by tests)."""
        if name not in self._descriptors:
            raise ValueError(f"Service '{name}' is not registered")
        with self._lock:
            self._overrides[name] = instance

    def clear_overrides(self) -> None:
        with self._lock:
            self._overrides.clear()

    def get(self, name: str) -> Any:
        """
        Get a service by name, building it and its dependencies on demand.

        Raises:
            ValueError: If service is not registered
            RuntimeError: If a circular dependency is detected
        """
        if name in self._overrides:
            return self._overrides[name]
        if name not in self._descriptors:
            raise ValueError(f"Service '{name}' is not registered")

        stack = self._stack()
        if name in stack:
            cycle = " -> ".join(stack + [name])
            raise RuntimeError(f"Circular dependency detected: {cycle}")

        descriptor = self._descriptors[name]
        if descriptor.lifecycle == ServiceLifecycle.TRANSIENT:
            return self._create_instance(descriptor)

        if descriptor.instance is not None:
            return descriptor.instance
        with descriptor.lock:
            if descriptor.instance is None:
                descriptor.instance = self._create_instance(descriptor)
            return descriptor.instance

    def has(self, name: str) -> bool:
        return name in self._descriptors

    def list_services(self) -> List[str]:
        return sorted(self._descriptors)

    def reset_service(self, name: str) -> None:
        """Drop a cached singleton so it is rebuilt on next get()."""
        if name in self._descriptors:
            self._descriptors[name].instance = None

    def validate_dependencies(self) -> List[str]:
        """Return a list of problems: dependencies that are not registered."""
        errors = []
        for name, descriptor in self._descriptors.items():
            for dep in descriptor.dependencies:
                if dep not in self._descriptors:
                    errors.append(f"Service '{name}' depends on unregistered service '{dep}'")
        return errors

    def get_initialization_order(self) -> List[str]:
        """Topological order of all registered services."""
        order: List[str] = []
        visited: Set[str] = set()

        def visit(node: str, path: Set[str]):
            if node in path:
                raise RuntimeError(f"Circular dependency involving '{node}'")
            if node in visited:
                return
            path.add(node)
            for dep in self._descriptors[node].dependencies:
                if dep in self._descriptors:
                    visit(dep, path)
            path.discard(node)
            visited.add(node)
            order.append(node)

        for name in sorted(self._descriptors):
            visit(name, set())
        return order

    def _stack(self) -> List[str]:
        if not hasattr(self._thread_local, 'stack'):
            self._thread_local.stack = []
        return self._thread_local.stack

    def _create_instance(self, descriptor: ServiceDescriptor) -> Any:
        stack = self._stack()
        stack.append(descriptor.name)
        try:
            deps = {dep: self.get(dep) for dep in descriptor.dependencies}
            instance = descriptor.factory(**deps)
            logger.debug(f"Created service instance: {descriptor.name}")
            return instance
        finally:
            stack.pop()
