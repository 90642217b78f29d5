"""Tool detection and installation.

This module makes sure the version-control client is available:
- DependencyChecker probes a tool with its version command
- DependencyInstaller installs it through a package manager strategy
- Strategies for Homebrew and apt, selected per platform
"""
