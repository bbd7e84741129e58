"""Test suite for agent-conductor."""
