"""Decision-and-execution loop for perpetual futures."""
