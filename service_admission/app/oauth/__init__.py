"""
OAuth package for the Admission Service.

Wraps the client-credentials grant used to obtain a short-lived bearer
token per organization before listing its devices.
"""

from .client import OAuthClient, OAUTH_SCOPE

__all__ = ["OAuthClient", "OAUTH_SCOPE"]
