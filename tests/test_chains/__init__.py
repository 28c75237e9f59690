"""Tests for ledger clients."""
