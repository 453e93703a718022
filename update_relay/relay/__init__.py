"""Remote trigger relay: outbound caller and forwarding endpoint."""

from update_relay.relay.client import TriggerResult, trigger
from update_relay.relay.server import ForwardServer

__all__ = ["ForwardServer", "TriggerResult", "trigger"]
