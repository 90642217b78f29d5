"""Bootstrap script execution inside a cloned workspace."""
