"""Boundary clients for chains, custody, bridging and notifications."""
