"""
ticketforge — shared utilities

Purpose
- Bounded async fan-out and SHA-256 fingerprint helpers.
"""
