"""
Credentia — HTTP API
"""
