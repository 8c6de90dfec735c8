"""HOA Ledger - charge and payment ledger engine for residential communities."""

__version__ = "0.1.0"
