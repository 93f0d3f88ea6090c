"""Delivery adapters for the dispatch engine."""

from event_dispatch.delivery.base import Delivery
from event_dispatch.delivery.collector import DeliveryResult, HttpCollectorDelivery
from event_dispatch.delivery.echo import EchoDelivery
from event_dispatch.delivery.executors import AsyncioDelivery, ThreadedDelivery

__all__ = [
    "AsyncioDelivery",
    "Delivery",
    "DeliveryResult",
    "EchoDelivery",
    "HttpCollectorDelivery",
    "ThreadedDelivery",
]
