"""Yard & dock scheduling engine."""
