"""Realtime state synchronization client for the Ontime event-timer server."""

__version__ = "0.1.0"
