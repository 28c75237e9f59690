"""Tests for request signing, enforcement policy and the M2M gate."""
