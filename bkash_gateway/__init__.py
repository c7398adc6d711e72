"""bKash tokenized checkout adapter."""
