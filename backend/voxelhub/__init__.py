"""VoxelHub marketplace backend: bidding and maker settlement."""
