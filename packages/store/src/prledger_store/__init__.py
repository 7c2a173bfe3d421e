"""Review history persistence for prledger."""
