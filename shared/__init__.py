"""
Shared utilities for VOLAPI processes.

This package contains functionality used by the API service and its scripts:
- logging_config: consistent logging setup
"""
