"""Presentation layer for agent-fleet.

Public API
----------
- :class:`RunConsole` -- rich (or plain-text) rendering of a ``FleetRunResult``
"""

from agent_fleet.presentation.console import RunConsole

__all__ = ["RunConsole"]
