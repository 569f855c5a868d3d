"""Maintenance scripts run against the configured database."""
