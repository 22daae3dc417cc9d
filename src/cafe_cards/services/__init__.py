"""Store access and loyalty workflows."""
