"""Sitebot command-line interface."""
