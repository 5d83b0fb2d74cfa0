"""
Intercom Sync - Synchronize directory members to Intercom and track member events.

This package resolves Intercom credentials, submits members as bulk user jobs
using the same settings the messenger receives at login, and records events
against members.
"""

__version__ = "1.0.0"
__author__ = "Intercom Sync Team"
