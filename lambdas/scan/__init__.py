"""Scan submission flow: decision engine and analysis client."""
