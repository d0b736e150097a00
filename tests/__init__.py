"""Tests for the listing photo editor."""
