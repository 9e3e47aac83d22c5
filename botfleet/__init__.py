"""Lifecycle orchestration engine for a fleet of trading bots."""

__version__ = '0.1.0'
