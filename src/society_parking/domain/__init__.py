# File: src/society_parking/domain/__init__.py
"""Domain layer: entities, value objects, events and error kinds"""
