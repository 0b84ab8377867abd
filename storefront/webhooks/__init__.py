"""Webhook inbound system.

Receives Fourthwall webhooks. Each webhook is signature-verified,
validated, deduplicated, recorded and dispatched.
"""
