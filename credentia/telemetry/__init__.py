"""
Credentia — Telemetry

Structured logging setup.
"""
