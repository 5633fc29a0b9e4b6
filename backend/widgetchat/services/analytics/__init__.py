"""Visitor session analytics."""
