"""Protocol behavior tests for the AniDB UDP engine.

These tests run the engine against an in-process mock server:
- Login, ENCRYPT negotiation, logout and expiry recovery (test_login_flow.py)
- Dispatcher results, lifecycle and stray datagrams (test_dispatcher.py)
"""
