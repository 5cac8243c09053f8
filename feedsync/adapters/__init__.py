"""Adapters layer for feedsync.

This module contains input/output adapters that interface with external systems.
Adapters implement Port interfaces defined in the domain layer: payload readers,
storage backends and the cloud import client.
"""
