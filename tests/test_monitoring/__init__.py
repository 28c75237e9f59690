"""Tests for structured logging."""
