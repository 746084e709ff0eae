"""Test suite for the prompt workbench."""
