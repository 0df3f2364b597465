"""
API routers for the Mailing List service.

Routers:
- emails: Subscriber create / read / upsert / opt-out / batch read
"""

from mailinglist.routers.emails import router as emails_router

__all__ = ["emails_router"]
