"""External command runner.

This module manages child process execution:
- Async subprocess invocation with an explicit argument vector
- Line-by-line stdout/stderr streaming in arrival order
- Exit code handling, distinct from failure to start
- Process-group termination on timeout or cancellation
"""
