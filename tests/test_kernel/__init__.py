"""
Tests for the kernel module.

Tests cover:
- EventBus: registration, removal, synchronous delivery, failure isolation
"""
