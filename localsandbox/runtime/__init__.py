"""Sandbox runtime: engine adapter, configuration, and state."""
