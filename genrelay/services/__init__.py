"""Services package for the generation relay."""
