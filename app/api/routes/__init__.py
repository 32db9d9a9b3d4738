"""
API routes.

This module organizes routes into:
- admin: Admin-only routes (Strava link, sync, unlink and preview)
"""
