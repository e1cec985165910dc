"""Test package for the detention engine."""
