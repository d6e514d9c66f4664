"""Short-term-rental turnover service."""
