"""Webhook ingress: authenticated trigger endpoint for the update procedure."""

from update_relay.webhook.auth import SECRET_HEADER, verify_secret
from update_relay.webhook.server import CORS_HEADERS, TriggerServer

__all__ = ["CORS_HEADERS", "SECRET_HEADER", "TriggerServer", "verify_secret"]
