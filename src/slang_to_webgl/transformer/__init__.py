"""Transformation passes and the IR they share."""
