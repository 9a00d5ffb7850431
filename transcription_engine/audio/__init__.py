"""Media probing and segment export."""
