"""
Tests for Society Parking
"""
