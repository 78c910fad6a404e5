"""Transports used to talk to sandbox processes."""
