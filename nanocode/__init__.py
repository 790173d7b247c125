"""nanocode: a minimal command-line coding agent."""
