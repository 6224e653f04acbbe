"""HTTP presentation layer over the feed engine."""
