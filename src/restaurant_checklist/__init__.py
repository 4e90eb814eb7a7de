"""Multi-tenant restaurant ordering backend."""
