"""Identity resolution across platforms."""
