"""
Integration Tests Package for Society Parking

These tests run the slot registry, booking ledger and parking service
together over the in-memory document store:
1. End-to-end booking, cancellation and expiry scenarios
2. Slot/booking consistency under concurrent requests
3. Live feeds, notifications and application wiring
"""
