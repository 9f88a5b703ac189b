"""
LeadRelay messaging core.

Resilient WhatsApp message delivery: webhook ingestion, outbound dispatch,
and the reliability layer (rate limiting, circuit breaking, retry, health).
"""

__version__ = "0.1.0"
