"""
RACV Quote Agent Tools

The quote flow exposed as agent tools.
"""

from racv_quote.tools.quote import QuoteTools, get_quote_tools

__all__ = [
    "QuoteTools",
    "get_quote_tools",
]
