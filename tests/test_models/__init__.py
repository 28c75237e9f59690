"""Tests for relay models."""
