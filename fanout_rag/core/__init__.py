"""Core infrastructure: configuration, logging, exceptions, constants."""
