"""
Jerry - AI voice calling agent for campus recruitment
"""

__version__ = "1.0.0"
