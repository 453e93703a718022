"""update-relay: authenticated webhook that launches a local self-update procedure."""

__version__ = "0.1.0"
