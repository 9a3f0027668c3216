"""
Credentia — Primitives

Base models and the record types persisted by the issuance core.
"""
