# clientguard/__init__.py
"""Client management portal - authentication and session-security core"""
__version__ = "1.0.0"
