"""Market opportunity scanning for local home-service categories."""
