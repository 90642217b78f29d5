"""Pytest configuration for all tests."""

import os

import pytest

# Settings read PROVISION_* variables; keep the developer's shell out of tests
for _name in list(os.environ):
    if _name.startswith("PROVISION_"):
        del os.environ[_name]


def pytest_collection_modifyitems(config, items):
    if os.name == "posix":
        return
    skip_posix = pytest.mark.skip(reason="requires a POSIX shell")
    for item in items:
        if "posix" in item.keywords:
            item.add_marker(skip_posix)


def pytest_configure(config):
    config.addinivalue_line("markers", "posix: test runs real sh/bash processes")
