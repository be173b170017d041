"""Command builders, drives, init handlers, kernel args, API operations and a Unix-socket transport for Firecracker microVMs."""

__version__ = "0.1.0"