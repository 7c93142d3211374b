"""Kernel services: document sequences and the audit sink."""
