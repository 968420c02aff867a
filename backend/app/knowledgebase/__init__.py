"""Knowledge-base collections and lifecycle operations."""
