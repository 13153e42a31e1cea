"""Gateways to the remote task service (RemoteGateway implementations)."""
