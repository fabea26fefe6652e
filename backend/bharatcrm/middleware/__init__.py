# backend/bharatcrm/middleware/__init__.py
"""
Custom middleware for the BharatCRM API.
"""

from bharatcrm.middleware.security import SecurityHeadersMiddleware

__all__ = ["SecurityHeadersMiddleware"]
