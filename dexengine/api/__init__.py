"""HTTP surface for the exchange engine."""
