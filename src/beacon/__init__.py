"""beacon: service registration and discovery over etcd."""

from .discovery import NOT_FOUND, Endpoint, ServiceDiscovery

__version__ = '0.1.0'
__all__ = ['Endpoint', 'NOT_FOUND', 'ServiceDiscovery']
