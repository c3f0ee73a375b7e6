"""Background workers for the settlement loops."""
