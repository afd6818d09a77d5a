"""Token price oracle."""
