# File: src/society_parking/infrastructure/__init__.py
"""Infrastructure layer: document stores, repositories, messaging and clock"""
