"""Jetson workstation setup — resilient post-flash provisioning."""

__version__ = "0.1.0"
