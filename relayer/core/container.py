# relayer/core/container.py

from typing import Any, Callable, Dict, List, Type, TypeVar

from .logging import RelayerLogger, log_with_context, DEBUG, ERROR

T = TypeVar('T')

Factory = Callable[['RelayerContainer'], Any]


class RelayerContainer:
    """
    Lazily built relayer services, one instance per type.

    Factories receive the container and pull their own collaborators from
    it; a factory that ends up asking for the service it is building is
    reported as a circular dependency.
    """

    def __init__(self, config):
        self._config = config
        self._factories: Dict[type, Factory] = {}
        self._instances: Dict[type, Any] = {}
        self._building: List[type] = []

        self._logger = RelayerLogger.get_logger('core.container')

    @property
    def config(self):
        return self._config

    def register_factory(self, service_type: Type[T], factory: Callable[['RelayerContainer'], T]) -> 'RelayerContainer':
        log_with_context(self._logger, DEBUG, "Registering service factory",
                         service_type=service_type.__name__,
                         factory=factory.__name__)
        self._factories[service_type] = factory
        self._instances.pop(service_type, None)
        return self

    def register_instance(self, service_type: Type[T], instance: T) -> 'RelayerContainer':
        self._factories.pop(service_type, None)
        self._instances[service_type] = instance
        return self

    def get(self, service_type: Type[T]) -> T:
        if service_type in self._instances:
            return self._instances[service_type]

        if service_type in self._building:
            path = " -> ".join(t.__name__ for t in self._building + [service_type])
            log_with_context(self._logger, ERROR, "Circular dependency detected", circular_path=path)
            raise ValueError(f"Circular dependency detected: {path}")

        factory = self._factories.get(service_type)
        if factory is None:
            raise ValueError(f"Service {service_type.__name__} not registered")

        self._building.append(service_type)
        try:
            instance = factory(self)
        except Exception as e:
            log_with_context(self._logger, ERROR, "Failed to build service",
                             service_type=service_type.__name__,
                             error=str(e))
            raise
        finally:
            self._building.pop()

        self._instances[service_type] = instance
        log_with_context(self._logger, DEBUG, "Service built",
                         service_type=service_type.__name__,
                         instance_type=type(instance).__name__)
        return instance
