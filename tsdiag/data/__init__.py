"""Series loading, transforms, and decomposition."""
