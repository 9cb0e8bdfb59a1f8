# File: src/society_parking/application/__init__.py
"""Application layer: slot registry, booking ledger, expiry sweeper and service facade"""
