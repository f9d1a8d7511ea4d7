"""Raid rosters, signup transitions and waitlist promotion."""
