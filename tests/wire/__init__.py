"""Wire-level tests for the AniDB UDP engine.

These tests open real UDP sockets on localhost and are marked ``network``.
"""
