"""Service layer for turnover reconciliation."""
