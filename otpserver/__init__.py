"""
Authenticator HTTP API (Flask).

    from otpserver import create_app
    create_app().run()
"""

from .app import create_app

__all__ = ["create_app"]
