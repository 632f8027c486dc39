"""
Worker module.
Contains the worker runtime, the handler registry and the built-in handlers.
"""
