"""
Resilience tests for the AniDB UDP engine.

These tests impair the loopback link deterministically:
- Lost requests and lost replies
- Duplicated and late replies
- Send spacing under bursts and resends
"""
