"""
Code Roast: AI-generated, sarcastic-but-useful code reviews behind a
subscription-gated web service.
"""

__version__ = "1.0.0"
