"""Registration, payment reconciliation and ticket issuance."""
