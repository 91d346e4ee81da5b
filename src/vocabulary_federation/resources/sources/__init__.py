"""Source registry documents."""
