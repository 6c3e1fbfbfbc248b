"""HTTP surface for the tip ledger."""
