"""Repository cloning with the version-control client."""
