"""Shared helpers for aiohttp backend services."""
