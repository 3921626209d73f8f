"""Leave module — allocations, balance ledger, working days, request lifecycle."""
