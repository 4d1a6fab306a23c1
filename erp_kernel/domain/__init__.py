"""Pure domain types for the ERP kernel: no sessions, no I/O."""
