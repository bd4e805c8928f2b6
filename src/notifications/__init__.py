"""Trip notifications: storage, relay to connected apps, and retention."""
