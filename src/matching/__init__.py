"""Driver registry, nearest-driver matching and offer expiry."""
