"""Connection plugins for Troupe."""

from troupe.connections.base import Connection, RunResult, create_connection_factory, select_connection_type

__all__ = ['Connection', 'RunResult', 'create_connection_factory', 'select_connection_type']
