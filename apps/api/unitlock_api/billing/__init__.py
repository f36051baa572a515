"""Payment processor, invoicing and webhook reconciliation."""
