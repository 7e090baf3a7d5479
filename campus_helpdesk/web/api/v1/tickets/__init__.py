"""Ticket API."""
