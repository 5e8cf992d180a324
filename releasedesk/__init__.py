"""
releasedesk - backend for submitting and reviewing music releases.

Artists build a release in a multi-step wizard, stage their audio and artwork,
and submit it; operators review submissions and move them through the
distribution workflow (Pending, Processing, Live, Rejected).
"""

__version__ = "0.1.0"

from releasedesk.server import ReleaseDeskServer

__all__ = ["ReleaseDeskServer", "__version__"]
