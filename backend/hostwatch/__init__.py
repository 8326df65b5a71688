"""Hosting uptime and TLS certificate monitoring engine."""
