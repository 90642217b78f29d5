"""Developer machine provisioning.

This package clones a repository and runs its bootstrap script, making
sure the version-control client is installed first:
- Async process runner with live output streaming
- Dependency check and package-manager install strategies
- Temporary workspace lifecycle with guaranteed cleanup
- Single-use orchestrator emitting an ordered event stream
- Click CLI observer
"""

__version__ = "0.1.0"
