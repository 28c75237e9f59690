"""Tests for relay, session key, content and publishing services."""
