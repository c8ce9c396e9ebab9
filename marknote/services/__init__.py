"""Host-independent stores backing the MarkNote API."""
