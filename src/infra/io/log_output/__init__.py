"""Console logging and run metadata."""
