"""Email Aggregator - unified mail ingestion with AI categorization.

This package pulls messages from Gmail and Outlook behind one pagination
contract, enriches each message with a category and priority from a local
Ollama model, and serves pages from a local store.
"""

__version__ = "0.1.0"
__author__ = "Trickl"

from email_aggregator.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__", "__author__"]
