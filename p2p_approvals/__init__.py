"""Approval workflow engine for purchase orders and vendor bills."""

__version__ = "1.0.0"
