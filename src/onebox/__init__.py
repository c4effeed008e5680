"""Real-time mail ingestion engine: IMAP IDLE in, deduplicated fan-out out."""

__version__ = "0.1.0"
