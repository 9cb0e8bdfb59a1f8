"""
Unit tests for the domain model, stores, repositories and application services
"""
