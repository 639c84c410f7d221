"""Snapshot delivery."""

from .coordinator import DeliveryCoordinator

__all__ = ["DeliveryCoordinator"]
