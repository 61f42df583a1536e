"""Webhook delivery service for data lifecycle notifications."""
