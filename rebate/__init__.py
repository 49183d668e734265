"""Rebate payout backend package."""
