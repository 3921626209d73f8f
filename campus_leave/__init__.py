"""Campus Leave — holiday calendar, working-day and leave accrual engine."""
