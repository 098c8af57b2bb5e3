"""Adapters — transports that run compiled fragments, and compute providers.

Public re-exports for convenient access.
"""

from converge.adapters.base import ComputeProvider, ExecutionContext, Node, Transport
from converge.adapters.mock import MockTransport, StaticProvider
from converge.adapters.registry import TransportRegistry

__all__ = [
    "ComputeProvider",
    "ExecutionContext",
    "MockTransport",
    "Node",
    "StaticProvider",
    "Transport",
    "TransportRegistry",
]
