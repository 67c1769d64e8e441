from .client import BrokerClient, BrokerError, ScanInfected, ScanPending

__all__ = ["BrokerClient", "BrokerError", "ScanInfected", "ScanPending"]
