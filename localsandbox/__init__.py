"""Local containerised sandboxes for coding agents."""
