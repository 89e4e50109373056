"""Pipeline services and analytics."""
