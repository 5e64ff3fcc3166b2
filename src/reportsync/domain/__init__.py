"""Domain layer: report records, ports and the reconciliation engine."""
