"""
Structured logging for Backend Token Sale.

JSON logs with timestamp, event_type, and wallet / distribution context.
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_tokensale.logging.logger import get_logger, short_address

__all__ = ["get_logger", "short_address"]
