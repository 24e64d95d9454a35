"""
FashionAI quota core - credits, rate limits, API key pools and response caching.
"""

__version__ = "0.1.0"
