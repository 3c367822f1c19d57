"""HTTP surface for UI collaborators."""
