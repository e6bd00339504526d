"""Silver append log and gold dedup materializer."""
