"""
Services module for club directory business logic.

This module organizes services into:
- sync: Strava link lifecycle, reconciliation and sync orchestration
"""
