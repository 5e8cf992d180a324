"""
Web Routes Package.

This package contains FastAPI route modules:
- releases: catalog, submission and workflow (/api/releases/*)
- uploads: staged uploads and previews (/api/uploads/tmp/*)
- admin: backup schedule (/api/admin/*)
"""

from releasedesk.web.routes.admin import register_admin_routes
from releasedesk.web.routes.releases import register_release_routes
from releasedesk.web.routes.uploads import register_upload_routes

__all__ = [
    "register_admin_routes",
    "register_release_routes",
    "register_upload_routes",
]
