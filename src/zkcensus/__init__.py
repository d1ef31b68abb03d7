"""
zkcensus - Privacy-Preserving Census via Zero-Knowledge Proofs

Passport holders register in a census by proving that their hidden age and
nationality fall into published buckets. The ledger counts members per age
range and continent without learning who registered, and a per-census
nullifier prevents anyone from registering twice.
"""

__version__ = "1.0.0"
__author__ = "zkcensus Team"
