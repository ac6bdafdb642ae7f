"""
Tests package - Test suite for the MSI AcrPull operator.

Contains:
- unit/: Unit tests for individual components
"""
