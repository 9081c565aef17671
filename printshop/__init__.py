"""Print-shop order progress service."""
