"""HTTP boundary to the remote image service."""
