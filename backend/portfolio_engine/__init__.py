"""Portfolio valuation and realized gain/loss engine."""
