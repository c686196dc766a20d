"""Sitebot: a chat assistant grounded in a website's page tree."""
