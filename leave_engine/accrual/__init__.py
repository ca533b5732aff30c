"""Accrual module: allocation, carry-forward and carried-day expiry."""
