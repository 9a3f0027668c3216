"""
Credentia — certificate issuance and verification.

Reviewers approve credential templates; approved templates become
immutable certificates bound to a resolved recipient; anyone holding a
verification token can prove a certificate is authentic.
"""

__version__ = "0.1.0"
