"""Tests for wa_gateway."""
