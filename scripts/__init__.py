"""
Entry point scripts for the riskgate engine.

Scripts:
- run_replay.py: Replay historical bars and signals on a paper venue
"""
