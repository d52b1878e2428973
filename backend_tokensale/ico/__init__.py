"""
ICO: sale phases, purchase pricing and the purchase flow.
"""

from backend_tokensale.ico.phases import DEFAULT_PHASES, IcoPhase, PurchaseQuote, quote_purchase
from backend_tokensale.ico.service import IcoService

__all__ = ["DEFAULT_PHASES", "IcoPhase", "IcoService", "PurchaseQuote", "quote_purchase"]
