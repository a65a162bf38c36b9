"""Lease lifecycle and rent-schedule engine."""
