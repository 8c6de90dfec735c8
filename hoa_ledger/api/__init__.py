"""HTTP surface of the ledger (administrative batch triggers)."""
