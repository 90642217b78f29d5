"""Temporary workspace lifecycle for a provisioning run."""
