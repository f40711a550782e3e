"""Test suite for the runnbook package.

This package contains unit and integration tests validating book
loading, placeholder expansion, the scenario operator, the runners
and the command-line and pytest integrations.
"""
