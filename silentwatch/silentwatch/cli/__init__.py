"""Command-line tools for inspecting and draining the local queue."""
