"""E-invoicing page monitor for government websites."""
