"""Unit tests for the MSI AcrPull operator."""
