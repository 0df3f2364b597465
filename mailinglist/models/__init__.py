"""Subscriber data models."""
