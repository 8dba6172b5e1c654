"""Domain models for host health, detected issues and discovered devices."""
